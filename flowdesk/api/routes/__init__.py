"""API route handlers for flowdesk."""

from flowdesk.api.routes import workflows as workflows
