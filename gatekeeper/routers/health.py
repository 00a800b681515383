from fastapi import APIRouter, HTTPException, status
from sqlalchemy import text

from gatekeeper.database import session_scope
from gatekeeper.errors import StoreUnavailable

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    try:
        with session_scope() as session:
            session.execute(text("SELECT 1"))
    except StoreUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "degraded", "database": "unavailable"},
        ) from exc
    return {"status": "ok", "database": "ok"}
