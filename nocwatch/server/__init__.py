"""HTTP pull endpoints and the push channel server."""

from nocwatch.server.app import create_web_app, start_web_server
from nocwatch.server.export import rows_to_xlsx

__all__ = ["create_web_app", "rows_to_xlsx", "start_web_server"]
