from dataclasses import asdict, replace
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from gatekeeper.config import settings
from gatekeeper.errors import InvalidContact, StoreUnavailable
from gatekeeper.schemas.admin import (
    BlacklistEntryResponse,
    BlacklistListResponse,
    BlacklistStatsResponse,
    CleanupRequest,
    CleanupResponse,
    ManualBlockRequest,
)
from gatekeeper.services.blacklist import BlacklistReason, BlacklistView, blacklist_engine
from gatekeeper.services.cleanup import CleanupResult, cleanup_service
from gatekeeper.services.contacts import ContactIdentity, ContactType


def require_admin(authorization: Optional[str] = Header(default=None)) -> None:
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "admin_disabled", "message": "Admin API is not configured"},
        )
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        token.strip().encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": "Invalid admin credentials"},
            headers={"WWW-Authenticate": "Bearer"},
        )


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _store_unavailable(exc: StoreUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()
    )


def _entry(view: BlacklistView) -> BlacklistEntryResponse:
    return BlacklistEntryResponse(**asdict(view))


def _cleanup_response(result: CleanupResult, dry_run: bool) -> CleanupResponse:
    verb = "would remove" if dry_run else "removed"
    return CleanupResponse(
        success=result.success,
        summary=result.summary,
        total_cleaned=result.total_cleaned,
        errors=result.errors,
        message=f"Cleanup {verb} {result.total_cleaned} records",
    )


@router.get("/blacklist", response_model=BlacklistListResponse)
def list_blacklist(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    search: Optional[str] = Query(default=None, min_length=1),
    contact_type: Optional[ContactType] = None,
    reason: Optional[BlacklistReason] = None,
) -> BlacklistListResponse:
    try:
        if search or contact_type or reason:
            views = blacklist_engine.search(search or "", contact_type, reason)
            return BlacklistListResponse(
                entries=[_entry(view) for view in views],
                total=len(views),
                has_more=False,
                page=1,
                limit=len(views),
            )
        result = blacklist_engine.list_active(page=page, limit=limit)
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return BlacklistListResponse(
        entries=[_entry(view) for view in result.entries],
        total=result.total,
        has_more=result.has_more,
        page=page,
        limit=limit,
    )


@router.get("/blacklist/recent", response_model=list[BlacklistEntryResponse])
def recent_blacklist_activity(
    hours: int = Query(default=24, ge=1, le=24 * 30),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[BlacklistEntryResponse]:
    try:
        views = blacklist_engine.recent_activity(hours=hours, limit=limit)
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return [_entry(view) for view in views]


@router.get("/blacklist/stats", response_model=BlacklistStatsResponse)
def blacklist_stats() -> BlacklistStatsResponse:
    try:
        stats = blacklist_engine.stats()
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return BlacklistStatsResponse(**asdict(stats))


@router.post(
    "/blacklist",
    response_model=BlacklistEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
def block_contact(payload: ManualBlockRequest) -> BlacklistEntryResponse:
    try:
        contact = ContactIdentity.parse(payload.contact_value, payload.contact_type)
    except InvalidContact as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_contact", "message": str(exc)},
        ) from exc
    try:
        view = blacklist_engine.manual_block(
            contact, duration_hours=payload.duration_hours, note=payload.note
        )
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return _entry(view)


@router.get("/cleanup", response_model=CleanupResponse)
def cleanup_preview() -> CleanupResponse:
    return _cleanup_response(cleanup_service.stats(settings.cleanup), dry_run=True)


@router.post("/cleanup", response_model=CleanupResponse)
def run_cleanup(payload: Optional[CleanupRequest] = None) -> CleanupResponse:
    overrides = payload.model_dump(exclude_none=True) if payload else {}
    result = cleanup_service.run(replace(settings.cleanup, **overrides))
    return _cleanup_response(result, dry_run=False)
