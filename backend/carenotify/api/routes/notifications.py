from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Response

from carenotify.core.container import Container
from carenotify.domain.notification import (
    DomainNotificationCreate,
    NotificationContent,
    NotificationRecipient,
)
from carenotify.schemas_pydantic.notification import (
    DeliveryListResponse,
    InteractionRequest,
    NotificationCreateRequest,
    NotificationCreateResponse,
    NotificationResponse,
    RecipientDeliveryResponse,
)
from carenotify.services.notification_orchestrator import NotificationOrchestrator

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("", response_model=NotificationCreateResponse, status_code=201)
@inject
async def create_notification(
    body: NotificationCreateRequest,
    orchestrator: NotificationOrchestrator = Depends(Provide[Container.orchestrator]),
) -> NotificationCreateResponse:
    request = DomainNotificationCreate(
        type=body.type,
        content=NotificationContent(**body.content.model_dump()),
        recipients=[
            NotificationRecipient(user_id=r.user_id, user_role=r.user_role, channels=list(r.channels))
            for r in body.recipients
        ],
        target_roles=list(body.target_roles),
        target_channels=list(body.target_channels),
        context_data=body.context_data,
        priority=body.priority,
        category=body.category,
        scheduled_for=body.scheduled_for,
        expires_at=body.expires_at,
        language=body.language,
    )
    notification_id = await orchestrator.create_notification(request)
    return NotificationCreateResponse(notification_id=notification_id)


@router.get("/{notification_id}", response_model=NotificationResponse)
@inject
async def get_notification(
    notification_id: str,
    orchestrator: NotificationOrchestrator = Depends(Provide[Container.orchestrator]),
) -> NotificationResponse:
    notification = await orchestrator.get_notification(notification_id)
    return NotificationResponse.model_validate(notification)


@router.get("/{notification_id}/deliveries", response_model=DeliveryListResponse)
@inject
async def get_deliveries(
    notification_id: str,
    orchestrator: NotificationOrchestrator = Depends(Provide[Container.orchestrator]),
) -> DeliveryListResponse:
    deliveries = await orchestrator.get_deliveries(notification_id)
    return DeliveryListResponse(
        notification_id=notification_id,
        deliveries=[RecipientDeliveryResponse.model_validate(d) for d in deliveries],
    )


@router.put("/{notification_id}/read", status_code=204)
@inject
async def mark_notification_read(
    notification_id: str,
    body: InteractionRequest,
    orchestrator: NotificationOrchestrator = Depends(Provide[Container.orchestrator]),
) -> Response:
    await orchestrator.mark_read(notification_id, body.user_id)
    return Response(status_code=204)


@router.put("/{notification_id}/click", status_code=204)
@inject
async def mark_notification_clicked(
    notification_id: str,
    body: InteractionRequest,
    orchestrator: NotificationOrchestrator = Depends(Provide[Container.orchestrator]),
) -> Response:
    await orchestrator.mark_clicked(notification_id, body.user_id)
    return Response(status_code=204)
