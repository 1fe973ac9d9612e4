"""HTTP API for flowdesk."""
