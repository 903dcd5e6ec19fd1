from receipt_api.schemas.receipt import (
    Receipt,
    ReceiptResponse,
    DuplicateResponse,
    ReceiptListResponse,
    DeleteResponse,
    HealthResponse,
    ErrorResponse
)

__all__ = [
    "Receipt",
    "ReceiptResponse",
    "DuplicateResponse",
    "ReceiptListResponse",
    "DeleteResponse",
    "HealthResponse",
    "ErrorResponse"
]
