"""Shared utilities: HTTP pooling, retries, subprocesses, caching, logging."""
