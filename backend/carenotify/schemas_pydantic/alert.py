from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from carenotify.domain.alert import EscalationLevel, EscalationRule
from carenotify.domain.enums.alert import AlertSeverity, AlertStatus, AlertType, EscalationRole
from carenotify.domain.enums.notification import DeliveryChannel


class AlertAcknowledgementSchema(BaseModel):
    by: str
    at: datetime
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AlertResolutionSchema(BaseModel):
    by: str
    at: datetime
    resolution: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AlertResponse(BaseModel):
    alert_id: str
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus
    message: str
    created_at: datetime
    updated_at: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)
    occurrences: int
    escalation_level: int
    acknowledgement: AlertAcknowledgementSchema | None = None
    resolution: AlertResolutionSchema | None = None

    model_config = ConfigDict(from_attributes=True)


class AlertListResponse(BaseModel):
    alerts: list[AlertResponse]
    total: int


class AcknowledgeAlertRequest(BaseModel):
    acknowledged_by: str
    notes: str | None = None


class ResolveAlertRequest(BaseModel):
    resolved_by: str
    resolution: str | None = None


class AlertStatisticsResponse(BaseModel):
    active_total: int
    active_critical: int
    active_acknowledged: int
    active_unacknowledged: int
    resolved_total: int
    resolved_last_24h: int
    by_type: dict[str, int]

    model_config = ConfigDict(from_attributes=True)


class EscalationLevelSchema(BaseModel):
    delay_seconds: float = Field(ge=0)
    recipient_roles: list[EscalationRole] = Field(min_length=1)
    channels: list[DeliveryChannel] = Field(min_length=1)


class EscalationRuleSchema(BaseModel):
    levels: list[EscalationLevelSchema] = Field(min_length=1)
    cooldown_seconds: float = Field(ge=0)

    @field_validator("levels")
    @classmethod
    def validate_levels(cls, v: list[EscalationLevelSchema]) -> list[EscalationLevelSchema]:
        delays = [level.delay_seconds for level in v]
        if delays != sorted(delays):
            raise ValueError("Escalation levels must be ordered by delay")
        return v

    def to_domain(self) -> EscalationRule:
        return EscalationRule(
            levels=tuple(
                EscalationLevel(
                    delay=timedelta(seconds=level.delay_seconds),
                    recipient_roles=tuple(level.recipient_roles),
                    channels=tuple(level.channels),
                )
                for level in self.levels
            ),
            cooldown=timedelta(seconds=self.cooldown_seconds),
        )

    @classmethod
    def from_domain(cls, rule: EscalationRule) -> "EscalationRuleSchema":
        return cls(
            levels=[
                EscalationLevelSchema(
                    delay_seconds=level.delay.total_seconds(),
                    recipient_roles=list(level.recipient_roles),
                    channels=list(level.channels),
                )
                for level in rule.levels
            ],
            cooldown_seconds=rule.cooldown.total_seconds(),
        )


class EscalationRulesResponse(BaseModel):
    rules: dict[AlertType, EscalationRuleSchema]
