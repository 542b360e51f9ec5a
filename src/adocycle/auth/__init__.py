"""Credential resolution and the one-time re-authentication retry."""
