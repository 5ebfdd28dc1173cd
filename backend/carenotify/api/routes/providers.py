from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends

from carenotify.core.container import Container
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.schemas_pydantic.notification import ProviderWebhookEvent, ProviderWebhookResponse
from carenotify.services.notification_orchestrator import NotificationOrchestrator

router = APIRouter(prefix="/providers", tags=["providers"])


@router.post("/email/webhook", response_model=ProviderWebhookResponse)
@inject
async def email_webhook(
    event: ProviderWebhookEvent,
    orchestrator: NotificationOrchestrator = Depends(Provide[Container.orchestrator]),
) -> ProviderWebhookResponse:
    changed = await orchestrator.handle_provider_event(
        DeliveryChannel.EMAIL, event.message_id, event.event, event.reason
    )
    return ProviderWebhookResponse(accepted=changed)


@router.post("/sms/webhook", response_model=ProviderWebhookResponse)
@inject
async def sms_webhook(
    event: ProviderWebhookEvent,
    orchestrator: NotificationOrchestrator = Depends(Provide[Container.orchestrator]),
) -> ProviderWebhookResponse:
    changed = await orchestrator.handle_provider_event(
        DeliveryChannel.SMS, event.message_id, event.event, event.reason
    )
    return ProviderWebhookResponse(accepted=changed)
