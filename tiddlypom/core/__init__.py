"""Core models, configuration and security helpers."""
