"""Integration tests that drive real git against local bare repositories."""
