from pydantic import BaseModel
from typing import List


class Receipt(BaseModel):
    id: str
    symbol: str
    action: str  # BUY / SELL / HOLD / ALERT
    price: float
    size: float = 0.0
    timestamp: str
    note: str = ""
    source: str = "manual"
    created_at: str


class ReceiptResponse(BaseModel):
    ok: bool = True
    data: Receipt


class DuplicateResponse(BaseModel):
    ok: bool = True
    duplicate: bool = True


class ReceiptListResponse(BaseModel):
    ok: bool = True
    count: int
    data: List[Receipt]


class DeleteResponse(BaseModel):
    ok: bool = True
    deleted: bool = True
    id: str


class HealthResponse(BaseModel):
    ok: bool = True
    time: str
    service: str
    version: str
    kv: bool
    auth: bool


class ErrorResponse(BaseModel):
    ok: bool = False
    code: str
    message: str
