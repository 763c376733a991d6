"""Test suite for consensus-orchestrator."""
