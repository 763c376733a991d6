"""Unit tests for hashing helpers."""

from __future__ import annotations

from consensus_orchestrator.utils.hashing import (
    canonical_json,
    canonical_json_digest,
    sha256_bytes,
    sha256_text,
)


def test_sha256_helpers_agree() -> None:
    assert sha256_text("abc") == sha256_bytes(b"abc")
    assert sha256_text("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_canonical_json_ignores_key_order() -> None:
    left = {"b": [1, 2], "a": {"y": "é", "x": None}}
    right = {"a": {"x": None, "y": "é"}, "b": [1, 2]}

    assert canonical_json(left) == '{"a":{"x":null,"y":"é"},"b":[1,2]}'
    assert canonical_json_digest(left) == canonical_json_digest(right)
