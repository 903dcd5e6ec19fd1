from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from typing import Optional
import logging

from receipt_api.core.errors import NotFound, ValidationFailed
from receipt_api.core.logging_config import get_request_id
from receipt_api.deps.auth import require_api_key
from receipt_api.deps.store import get_receipt_service
from receipt_api.schemas.receipt import (
    DeleteResponse,
    DuplicateResponse,
    ErrorResponse,
    ReceiptListResponse,
    ReceiptResponse,
)
from receipt_api.services.receipt_service import ReceiptService

logger = logging.getLogger(__name__)
router = APIRouter(
    dependencies=[Depends(require_api_key)],
    responses={
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse, "description": "kv_missing / kv_error"},
    },
)


@router.post(
    "/receipt",
    status_code=201,
    responses={
        200: {"model": DuplicateResponse},
        201: {"model": ReceiptResponse},
        400: {"model": ErrorResponse},
    },
)
async def create_receipt(request: Request, service: ReceiptService = Depends(get_receipt_service)):
    """Record a receipt. A repeat of the same receipt within the dedup window returns duplicate=true."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationFailed("Body must be valid JSON", code="invalid_json")

    # Store calls are blocking; keep them off the event loop
    result = await run_in_threadpool(service.ingest, payload, get_request_id())
    if result.duplicate:
        return JSONResponse(status_code=200, content=DuplicateResponse().model_dump())
    return JSONResponse(status_code=201, content=ReceiptResponse(data=result.receipt).model_dump())


@router.get("/receipt/{receipt_id}", response_model=ReceiptResponse, responses={404: {"model": ErrorResponse}})
def get_receipt(receipt_id: str, service: ReceiptService = Depends(get_receipt_service)):
    receipt = service.get(receipt_id)
    if receipt is None:
        raise NotFound(f"Receipt {receipt_id} not found")
    return ReceiptResponse(data=receipt)


@router.get("/receipts", response_model=ReceiptListResponse)
def list_receipts(
    limit: Optional[str] = Query(None),
    service: ReceiptService = Depends(get_receipt_service),
):
    """Most recent receipts first. limit is clamped to [1, LIST_MAX_LIMIT]; junk falls back to the default."""
    parsed: Optional[int] = None
    if limit is not None:
        try:
            parsed = int(float(limit))
        except (ValueError, OverflowError):
            logger.debug("Ignoring non-numeric limit=%r", limit)
    receipts = service.list_recent(parsed)
    return ReceiptListResponse(count=len(receipts), data=receipts)


@router.delete("/receipt/{receipt_id}", response_model=DeleteResponse, responses={404: {"model": ErrorResponse}})
def delete_receipt(receipt_id: str, service: ReceiptService = Depends(get_receipt_service)):
    if not service.delete(receipt_id):
        raise NotFound(f"Receipt {receipt_id} not found")
    logger.info("decision=DELETED id=%s", receipt_id)
    return DeleteResponse(id=receipt_id)
