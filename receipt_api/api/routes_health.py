from fastapi import APIRouter, Depends, Request

from receipt_api.core.config import Settings
from receipt_api.deps.store import get_settings
from receipt_api.schemas.receipt import HealthResponse
from receipt_api.utils.clock import utc_now_iso

router = APIRouter()


@router.get("/", response_model=HealthResponse)
@router.get("/health", response_model=HealthResponse)
def health(request: Request, settings: Settings = Depends(get_settings)):
    """Liveness plus a store ping. Never requires auth."""
    store = request.app.state.store
    return {
        "ok": True,
        "time": utc_now_iso(request.app.state.clock),
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "kv": bool(store is not None and store.ping()),
        "auth": settings.auth_enabled,
    }
