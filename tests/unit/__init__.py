"""Unit tests grouped by plane."""
