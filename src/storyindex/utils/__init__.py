"""Shared helpers: logging, bounded concurrency, exception hierarchy."""
