from datetime import UTC, datetime

from fastapi import APIRouter

from realty_billing.config import Config

router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/ping")
async def ping():
    """Liveness check"""
    return {
        "ok": True,
        "service": Config.SERVICE_NAME,
        "timestamp": datetime.now(UTC).isoformat(),
    }
