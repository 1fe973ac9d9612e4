"""Core module for flowdesk configuration, errors and resilience helpers."""
