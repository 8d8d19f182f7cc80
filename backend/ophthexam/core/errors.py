from __future__ import annotations

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class EdgeFunctionError(Exception):
    """Failure of a public edge handler, rendered as ``{"error": message}``."""

    def __init__(self, status_code: int, message: str, *, extra: dict | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra or {}
