"""Valkey-backed cache and distributed locks."""
