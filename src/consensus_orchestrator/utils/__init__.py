"""Shared utilities: async concurrency helpers and deterministic hashing."""
