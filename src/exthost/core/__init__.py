"""Core: config, auth, logging, shared helpers."""
