"""Error taxonomy shared by services and routes.

Every failure reaching the client is rendered as
``{"ok": false, "code": <stable code>, "message": <human text>}``.
"""
from typing import Any, Dict, Optional


class ApiError(Exception):
    """Raised anywhere in request handling to produce a structured error response."""

    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "code": self.code, "message": self.message}


class ValidationFailed(ApiError):
    """First failing validation rule for an incoming receipt."""

    def __init__(self, message: str, code: str = "invalid_receipt"):
        super().__init__(400, code, message)


class Unauthorized(ApiError):
    def __init__(self, message: str = "Missing or invalid API key"):
        super().__init__(401, "unauthorized", message)


class NotFound(ApiError):
    def __init__(self, message: str = "Not found"):
        super().__init__(404, "not_found", message)


class StoreError(Exception):
    """Raised by key-value store adapters when the backend fails."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class StoreNotConfiguredError(ApiError):
    def __init__(self, message: str = "Key-value store is not configured (set KV_URL)"):
        super().__init__(500, "kv_missing", message)
