"""Saga primitives: errors, polling, retry, status graphs and signing."""
