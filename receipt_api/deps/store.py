from fastapi import Request

from receipt_api.core.config import Settings
from receipt_api.core.errors import StoreNotConfiguredError
from receipt_api.services.receipt_service import ReceiptService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_receipt_service(request: Request) -> ReceiptService:
    """Service bound to the app's store. Raises kv_missing when KV_URL was never configured."""
    service = request.app.state.receipt_service
    if service is None:
        raise StoreNotConfiguredError()
    return service
