"""HTTP API for the price service."""

from pricehub.api.server import create_app, error_response


__all__ = [
    "create_app",
    "error_response",
]
