"""
Notifications API endpoints.

Provides endpoints for:
- Notification history (list, unread count, mark as read, archive)
- Notification preferences (get, update) and channel targets
- Sending and broadcasting through the preference engine
- Type x status statistics and on-demand scheduled dispatch

Every route acts for the recipient named by the X-Recipient-Id header.

Rate Limiting:
- /send: 60 requests per minute per IP
- /broadcast, /dispatch: 10 requests per minute per IP
"""

from datetime import datetime
from functools import lru_cache
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from crewnotify.src.config.settings import get_settings
from crewnotify.src.db.database import get_db
from crewnotify.src.middleware.recipient import RecipientContext, get_recipient_context
from crewnotify.src.models.notification import NotificationStatus
from crewnotify.src.schemas.notifications import (
    BroadcastRequest,
    BroadcastResponse,
    DispatchResponse,
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    NotificationResponse,
    NotificationStatsEntry,
    NotificationStatsResponse,
    PushTokenUpdate,
    SendNotificationRequest,
    SendNotificationResponse,
    UnreadCountResponse,
    WebPushSubscriptionUpdate,
)
from crewnotify.src.services.delivery_router import DeliveryRouter, RetryPolicy, build_default_router
from crewnotify.src.services.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from crewnotify.src.services.notification_service import PreferenceEngine
from crewnotify.src.services.scheduled_dispatcher import ScheduledDispatcher
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("api")

# Rate limiter for send/broadcast endpoints
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
)


# ============================================================================
# Dependencies
# ============================================================================


@lru_cache()
def get_delivery_router() -> DeliveryRouter:
    """Process-wide delivery router built from settings."""
    return build_default_router(get_settings())


def get_engine(
    db: Session = Depends(get_db),
    delivery_router: DeliveryRouter = Depends(get_delivery_router),
) -> PreferenceEngine:
    """Create a PreferenceEngine bound to the request's database session."""
    return PreferenceEngine(
        db,
        router=delivery_router,
        retry_policy=RetryPolicy.from_settings(get_settings()),
    )


def _raise_http(err: ServiceError) -> NoReturn:
    """Translate a service exception to an HTTPException."""
    if isinstance(err, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    if isinstance(err, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=err.message) from err
    if isinstance(err, InvalidTransitionError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(err)) from err
    if isinstance(err, PersistenceError):
        logger.error("Notification store unavailable", extra={"error": str(err)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification store unavailable",
        ) from err
    raise err


def _preferences_response(engine: PreferenceEngine, recipient_id: int) -> NotificationPreferencesResponse:
    prefs = engine.preferences.get_or_create(recipient_id)
    view = engine.preferences.to_dict(prefs)
    return NotificationPreferencesResponse(
        push_enabled=view["push_enabled"],
        email_enabled=view["email_enabled"],
        notification_types=view["notification_types"],
        quiet_hours=view["quiet_hours"],
        reminder_settings=view["reminder_settings"],
        push_token=view["push_token"],
        web_push_subscribed=bool(view["web_push_subscription"]),
        last_updated=view["last_updated"],
    )


# ============================================================================
# Notification History Endpoints
# ============================================================================


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List notifications",
)
async def list_notifications(
    status_filter: Optional[NotificationStatus] = Query(default=None, alias="status"),
    type_filter: Optional[str] = Query(default=None, alias="type", max_length=50),
    limit: int = Query(default=20, ge=1, le=100),
    page: int = Query(default=1, ge=1),
    include_expired: bool = Query(default=False),
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """
    Returns the recipient's notifications, newest first, with the unread count.
    """
    notifications, total = engine.store.list_notifications(
        recipient_id=ctx.recipient_id,
        status=status_filter.value if status_filter else None,
        notification_type=type_filter,
        limit=limit,
        page=page,
        include_expired=include_expired,
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
        page=page,
        limit=limit,
        unread_count=engine.store.get_unread_count(ctx.recipient_id),
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Get unread notification count",
)
async def get_unread_count(
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """Returns the count of unread, non-expired notifications."""
    return UnreadCountResponse(unread_count=engine.store.get_unread_count(ctx.recipient_id))


@router.get(
    "/stats",
    response_model=NotificationStatsResponse,
    summary="Get notification statistics",
)
async def get_notification_stats(
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """
    Returns notification counts by type and status, optionally limited to
    a created_at range.
    """
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be before end_date",
        )
    stats = engine.store.get_stats(start=start_date, end=end_date)
    return NotificationStatsResponse(stats=[NotificationStatsEntry(**entry) for entry in stats])


@router.put(
    "/read-all",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
async def mark_all_notifications_read(
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """
    Mark every unread, non-archived notification as read.

    Idempotent; calling when everything is already read returns 0.
    """
    try:
        updated_count = engine.store.mark_all_as_read(ctx.recipient_id)
    except ServiceError as err:
        _raise_http(err)
    return MarkAllReadResponse(updated_count=updated_count)


@router.put(
    "/{guid}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
)
async def mark_notification_read(
    guid: str,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """Mark a single notification as read. Re-reading is allowed."""
    try:
        notification = engine.store.mark_as_read(guid, ctx.recipient_id)
    except ServiceError as err:
        _raise_http(err)
    return NotificationResponse.model_validate(notification)


@router.delete(
    "/{guid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Archive a notification",
)
async def archive_notification(
    guid: str,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """Archive a notification. The record is kept but leaves active views."""
    try:
        engine.store.archive(guid, ctx.recipient_id)
    except ServiceError as err:
        _raise_http(err)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Notification Preferences Endpoints
# ============================================================================


@router.get(
    "/preferences",
    response_model=NotificationPreferencesResponse,
    summary="Get notification preferences",
)
async def get_notification_preferences(
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """Returns the recipient's preferences, created with defaults on first access."""
    return _preferences_response(engine, ctx.recipient_id)


@router.put(
    "/preferences",
    response_model=NotificationPreferencesResponse,
    summary="Update notification preferences",
)
async def update_notification_preferences(
    body: NotificationPreferencesUpdate,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """
    Update the recipient's preferences.

    All fields are optional; nested sections are merged key by key.
    """
    try:
        engine.preferences.update(ctx.recipient_id, body.model_dump(exclude_none=True))
    except ServiceError as err:
        _raise_http(err)
    return _preferences_response(engine, ctx.recipient_id)


@router.post(
    "/preferences/push-token",
    response_model=NotificationPreferencesResponse,
    summary="Register the mobile push token",
)
async def update_push_token(
    body: PushTokenUpdate,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """
    Register or clear (null) the mobile push token.

    Only notifications created afterwards are addressed to the new token.
    """
    try:
        engine.preferences.update_push_token(ctx.recipient_id, body.push_token)
    except ServiceError as err:
        _raise_http(err)
    return _preferences_response(engine, ctx.recipient_id)


@router.post(
    "/preferences/web-push-subscription",
    response_model=NotificationPreferencesResponse,
    summary="Register the web push subscription",
)
async def update_web_push_subscription(
    body: WebPushSubscriptionUpdate,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """Register or clear (null) the browser push subscription."""
    subscription = body.subscription.model_dump() if body.subscription else None
    try:
        engine.preferences.update_web_push_subscription(ctx.recipient_id, subscription)
    except ServiceError as err:
        _raise_http(err)
    return _preferences_response(engine, ctx.recipient_id)


# ============================================================================
# Send / Broadcast / Dispatch Endpoints
# ============================================================================


@router.post(
    "/send",
    response_model=SendNotificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification to one recipient",
)
@limiter.limit("60/minute")
async def send_notification(
    request: Request,
    body: SendNotificationRequest,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """
    Send a notification through preference gating.

    Returns 201 with the notification (delivered, or pending when deferred
    or no channel acknowledged), or 200 with sent=false when the recipient's
    preferences or the dedup guard suppressed it.
    """
    try:
        recipient = engine.identity_resolver.resolve_external(body.recipient_id)
        notification = engine.send_if_allowed(
            recipient.id,
            {
                "title": body.title,
                "message": body.message,
                "type": body.type,
                "priority": body.priority.value,
                "related_entity": body.related_entity.model_dump(mode="json") if body.related_entity else None,
                "data": body.data,
                "expires_at": body.expires_at,
                "sender_id": ctx.recipient_id,
            },
        )
    except ServiceError as err:
        _raise_http(err)

    if notification is None:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=SendNotificationResponse(
                sent=False,
                message="Notification not sent (user preferences or duplicate suppression)",
            ).model_dump(mode="json"),
        )

    return SendNotificationResponse(
        sent=True,
        message="Notification sent",
        notification=NotificationResponse.model_validate(notification),
    )


@router.post(
    "/broadcast",
    response_model=BroadcastResponse,
    summary="Broadcast a notification",
)
@limiter.limit("10/minute")
async def broadcast_notification(
    request: Request,
    body: BroadcastRequest,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """
    Send a notification to the given recipients, or every active recipient.

    Each recipient goes through preference gating; unknown recipient ids
    are counted as failed.
    """
    recipient_ids = None
    failed = 0
    if body.recipient_ids is not None:
        recipient_ids = []
        for external_id in dict.fromkeys(body.recipient_ids):
            try:
                recipient_ids.append(engine.identity_resolver.resolve_external(external_id).id)
            except NotFoundError:
                failed += 1

    try:
        result = engine.broadcast(
            {
                "title": body.title,
                "message": body.message,
                "type": body.type,
                "priority": body.priority.value,
                "data": body.data,
                "sender_id": ctx.recipient_id,
            },
            recipient_ids=recipient_ids,
        )
    except ServiceError as err:
        _raise_http(err)

    return BroadcastResponse(
        total=result.total + failed,
        sent=result.sent,
        suppressed=result.suppressed,
        failed=result.failed + failed,
    )


@router.post(
    "/dispatch",
    response_model=DispatchResponse,
    summary="Run one scheduled dispatch sweep",
)
@limiter.limit("10/minute")
async def dispatch_scheduled(
    request: Request,
    ctx: RecipientContext = Depends(get_recipient_context),
    engine: PreferenceEngine = Depends(get_engine),
):
    """Re-attempt due deferred and retrying notifications now."""
    try:
        summary = ScheduledDispatcher(engine.store).process_scheduled_notifications()
    except ServiceError as err:
        _raise_http(err)
    logger.info("Manual dispatch requested", extra={"by": ctx.recipient_guid, **summary.to_dict()})
    return DispatchResponse(**summary.to_dict())
