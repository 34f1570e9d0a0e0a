"""Shared utilities: settings and logging."""
