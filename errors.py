"""
API error taxonomy

Every failure a handler can produce is one of these. main.py renders them
into the standard {"success": false, ...} envelope.
"""

from typing import Any, Dict, Iterable


class ApiError(Exception):
    status_code = 500
    # Key the message is reported under in the envelope
    field = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> Dict[str, Any]:
        return {"success": False, self.field: self.message}


class ValidationFailed(ApiError):
    status_code = 400


class DuplicateKey(ApiError):
    status_code = 400

    def __init__(self, message: str = "El email ya existe"):
        super().__init__(message)


class NotFound(ApiError):
    status_code = 404
    field = "message"


class StoreError(ApiError):
    status_code = 500


def describe_errors(errors: Iterable[Dict[str, Any]]) -> str:
    """Flatten pydantic error dicts into one readable line."""
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)
