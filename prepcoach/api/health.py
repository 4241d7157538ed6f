import logging

from fastapi import APIRouter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness only; does not touch the database or the session store."""
    return {"status": "ok"}


__all__ = ["router"]
