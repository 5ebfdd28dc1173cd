from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query

from carenotify.core.container import Container
from carenotify.domain.enums.alert import AlertType
from carenotify.schemas_pydantic.alert import (
    AcknowledgeAlertRequest,
    AlertListResponse,
    AlertResponse,
    AlertStatisticsResponse,
    EscalationRuleSchema,
    EscalationRulesResponse,
    ResolveAlertRequest,
)
from carenotify.services.alerts.escalation_engine import AlertEscalationEngine

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=AlertListResponse)
@inject
async def get_active_alerts(
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> AlertListResponse:
    alerts = engine.get_active_alerts()
    return AlertListResponse(alerts=[AlertResponse.model_validate(a) for a in alerts], total=len(alerts))


@router.get("/history", response_model=AlertListResponse)
@inject
async def get_alert_history(
    limit: int = Query(50, ge=1, le=500),
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> AlertListResponse:
    alerts = engine.get_alert_history(limit=limit)
    return AlertListResponse(alerts=[AlertResponse.model_validate(a) for a in alerts], total=len(alerts))


@router.get("/statistics", response_model=AlertStatisticsResponse)
@inject
async def get_alert_statistics(
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> AlertStatisticsResponse:
    return AlertStatisticsResponse.model_validate(engine.get_alert_statistics())


@router.get("/rules", response_model=EscalationRulesResponse)
@inject
async def get_escalation_rules(
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> EscalationRulesResponse:
    return EscalationRulesResponse(
        rules={t: EscalationRuleSchema.from_domain(r) for t, r in engine.get_escalation_rules().items()}
    )


@router.get("/rules/{alert_type}", response_model=EscalationRuleSchema)
@inject
async def get_escalation_rule(
    alert_type: AlertType,
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> EscalationRuleSchema:
    return EscalationRuleSchema.from_domain(engine.get_escalation_rule(alert_type))


@router.put("/rules/{alert_type}", response_model=EscalationRuleSchema)
@inject
async def update_escalation_rule(
    alert_type: AlertType,
    rule: EscalationRuleSchema,
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> EscalationRuleSchema:
    engine.update_escalation_rule(alert_type, rule.to_domain())
    return EscalationRuleSchema.from_domain(engine.get_escalation_rule(alert_type))


@router.get("/{alert_id}", response_model=AlertResponse)
@inject
async def get_alert(
    alert_id: str,
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> AlertResponse:
    return AlertResponse.model_validate(engine.get_alert(alert_id))


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
@inject
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeAlertRequest,
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> AlertResponse:
    alert = await engine.acknowledge_alert(alert_id, body.acknowledged_by, body.notes)
    return AlertResponse.model_validate(alert)


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
@inject
async def resolve_alert(
    alert_id: str,
    body: ResolveAlertRequest,
    engine: AlertEscalationEngine = Depends(Provide[Container.escalation_engine]),
) -> AlertResponse:
    alert = await engine.resolve_alert(alert_id, body.resolved_by, body.resolution)
    return AlertResponse.model_validate(alert)
