"""flowdesk - cross-plugin workflow orchestration for a productivity assistant."""

__version__ = "1.0.0"
