"""Health check endpoint."""
import logging
from fastapi import APIRouter, Request

from callrelay.api.relay import active_call_count

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus the number of connected relay calls."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {"status": "healthy", "active_calls": active_call_count()}
