"""
Domain models for care-plan monitoring.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation and for the camelCase JSON shape shared with
the remote API and the local store.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _ensure_utc(value: datetime) -> datetime:
    """Naive timestamps coming off the wire are interpreted as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AlertType(str, Enum):
    """Signal family that produced an alert."""

    VITAL_SIGN = "vital_sign"
    MEDICATION_COMPLIANCE = "medication_compliance"
    MISSED_VISITS = "missed_visits"
    TASK_COMPLETION = "task_completion"
    ANOMALY = "anomaly"
    PREDICTION = "prediction"


class AlertLevel(str, Enum):
    """Alert severity, ordered info < warning < urgent."""

    INFO = "info"
    WARNING = "warning"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {AlertLevel.INFO: 0, AlertLevel.WARNING: 1, AlertLevel.URGENT: 2}


class AlertStatus(str, Enum):
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"


class CarePlan(CamelModel):
    """Entry of the active-plan list; extra fields from the server are kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    patient_id: str | None = None


class VitalSignMeasurement(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    type: str
    value: float
    unit: str | None = None
    timestamp: UtcDatetime


class MedicationEvent(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    status: str = Field(description="scheduled | taken | ...")


class VisitRecord(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    scheduled_date: UtcDatetime
    status: str = Field(description="missed | completed | ...")


class TaskRecord(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    due_date: UtcDatetime
    status: str


class CarePlanSnapshot(CamelModel):
    """Latest monitoring data for one care plan. Read-only."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    vital_signs: list[VitalSignMeasurement] = Field(default_factory=list)
    medications: list[MedicationEvent] = Field(default_factory=list)
    visits: list[VisitRecord] = Field(default_factory=list)
    tasks: list[TaskRecord] = Field(default_factory=list)


class Alert(CamelModel):
    """An alert raised by a rule evaluator or statistical analyzer."""

    id: str
    care_plan_id: str
    patient_id: str | None = None
    type: AlertType
    sub_type: str | None = None
    level: AlertLevel
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: UtcDatetime = Field(default_factory=lambda: datetime.now(UTC))
    status: AlertStatus = AlertStatus.NEW
    acknowledged_at: UtcDatetime | None = None

    @property
    def signal_key(self) -> tuple[str, AlertType, str | None]:
        """Identifies the monitored signal independent of when it fired."""
        return (self.care_plan_id, self.type, self.sub_type)

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.NEW


class PendingSyncOperation(CamelModel):
    """Durable outbox entry awaiting confirmed delivery to the server."""

    id: str
    type: str = Field(description="Resource type; also the drain endpoint path")
    action: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: UtcDatetime
    attempts: int = Field(default=0, ge=0)
    next_attempt: UtcDatetime | None = None
    last_attempt: UtcDatetime | None = None
    last_error: str | None = None
    priority: bool = False
    version: int = Field(default=1, ge=1)
    has_conflict: bool = False
    conflict_id: str | None = None
    server_data: dict[str, Any] | None = Field(
        default=None, description="Server version captured when the conflict was parked"
    )


class SyncDrainResult(CamelModel):
    success_count: int = 0
    fail_count: int = 0
    conflict_count: int = 0

    def __add__(self, other: "SyncDrainResult") -> "SyncDrainResult":
        return SyncDrainResult(
            success_count=self.success_count + other.success_count,
            fail_count=self.fail_count + other.fail_count,
            conflict_count=self.conflict_count + other.conflict_count,
        )


class UrgentNotification(CamelModel):
    """Platform-agnostic notification for an urgent alert."""

    title: str
    body: str
    tag: str
    require_interaction: bool = True
    data: dict[str, str] = Field(description="Deep-link ids: alertId, carePlanId")


class MonitoringPassReport(CamelModel):
    """Summary of one evaluation pass over the active plans."""

    started_at: UtcDatetime
    trigger: Literal["timer", "init", "event", "manual"] = "manual"
    plans_checked: int = 0
    plans_skipped: int = 0
    plans_failed: int = 0
    alerts_generated: int = 0
    duration_seconds: float = Field(default=0.0, ge=0.0)
