"""Shared helpers: seeded random draws and logging setup."""
