"""
API module for FieldSync - HTTP transport.

The HTTP server is a thin adapter: it parses query strings and bodies,
calls the coordinators, and maps their errors to status codes.
"""

from .http_server import QueueRequest, create_http_app

__all__ = ["QueueRequest", "create_http_app"]
