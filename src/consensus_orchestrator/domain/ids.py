"""Identifier helpers: ULID run ids, task id validation, and content-derived ids."""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

from consensus_orchestrator.utils.hashing import sha256_text

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

RUN_ID_PREFIX: Final[str] = "run"
FINDING_ID_PREFIX: Final[str] = "fnd"
RECORD_ID_PREFIX: Final[str] = "rec"

_CONTENT_DIGEST_LENGTH: Final[int] = 16
_TASK_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:/-]{0,127}$")
_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}
# Separates hashed fields so ("a", "bc") and ("ab", "c") digest differently.
_FIELD_SEPARATOR: Final[str] = "\x1f"

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= ts_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {ts_ms}"
        )
    provider = secrets.token_bytes if randbytes is None else randbytes
    random_bytes = bytes(provider(ULID_RANDOM_BYTES))
    if len(random_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")

    value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    chars = ["0"] * ULID_LENGTH
    for index in range(ULID_LENGTH - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[value & 0b11111]
        value >>= 5
    return "".join(chars)


def validate_ulid(value: str) -> None:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")
    for index, char in enumerate(value):
        if char.upper() not in _DECODE_TABLE:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")


def generate_run_id(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    return f"{RUN_ID_PREFIX}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_run_id(id_str: str) -> None:
    lead = f"{RUN_ID_PREFIX}-"
    if not isinstance(id_str, str) or not id_str.startswith(lead):
        raise ValueError(f"expected prefix '{lead}'")
    validate_ulid(id_str[len(lead) :])


def validate_task_id(task_id: object) -> str:
    """Return ``task_id`` when it is a usable graph node id, else raise ``ValueError``."""
    if not isinstance(task_id, str):
        raise ValueError(f"task id must be a string, got {type(task_id).__name__}")
    if not _TASK_ID_RE.fullmatch(task_id):
        raise ValueError(
            f"task id {task_id!r} must start with an alphanumeric character and contain only "
            "letters, digits, '.', '_', ':', '/', or '-' (max 128 chars)"
        )
    return task_id


def finding_id(source_id: str, location: str, title: str, ordinal: int) -> str:
    """Deterministic finding id derived from its origin and position in the batch."""
    digest = sha256_text(_FIELD_SEPARATOR.join((source_id, location, title, str(ordinal))))
    return f"{FINDING_ID_PREFIX}-{digest[:_CONTENT_DIGEST_LENGTH]}"


def record_id(location: str, finding_ids: tuple[str, ...]) -> str:
    digest = sha256_text(_FIELD_SEPARATOR.join((location, *finding_ids)))
    return f"{RECORD_ID_PREFIX}-{digest[:_CONTENT_DIGEST_LENGTH]}"


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "FINDING_ID_PREFIX",
    "RECORD_ID_PREFIX",
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "finding_id",
    "generate_run_id",
    "generate_ulid",
    "record_id",
    "validate_run_id",
    "validate_task_id",
    "validate_ulid",
]
