"""
Quota Policy

Pure decision logic for fitting a user's horses into a plan limit.
No I/O: the enforcer service loads horses, asks for a decision and
applies it.

Policy (oldest-preserved):
- Over the limit: disable the newest-created active horses.
- Under the limit: reactivate disabled horses, oldest-created first,
  up to the spare capacity.

Reactivation order is creation age, not disabled_at: raising a limit
restores the same horses a fresh fit to that limit would keep.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, List, Optional, Protocol, Sequence, TypeVar
from uuid import UUID

from entitlements.domain.subscription import (
    UNLIMITED,
    ChangeTrigger,
    DisabledReason,
    PlanChangeType,
    SlotLimit,
)


class QuotaResource(Protocol):
    id: UUID
    created_at: datetime


R = TypeVar("R", bound=QuotaResource)


@dataclass
class QuotaDecision(Generic[R]):
    """Which horses to flip; everything else keeps its status."""
    to_disable: List[R] = field(default_factory=list)
    to_reactivate: List[R] = field(default_factory=list)

    @property
    def affected(self) -> int:
        return len(self.to_disable) + len(self.to_reactivate)

    @property
    def is_noop(self) -> bool:
        return self.affected == 0


def _by_age(resources: Sequence[R]) -> List[R]:
    # id breaks ties so equal timestamps still order deterministically
    return sorted(resources, key=lambda r: (r.created_at, str(r.id)))


def plan_quota_changes(
    active: Sequence[R],
    disabled: Sequence[R],
    limit: SlotLimit,
) -> QuotaDecision[R]:
    """Decide which horses to disable or reactivate for a new limit."""
    if limit == UNLIMITED:
        return QuotaDecision(to_reactivate=_by_age(disabled))

    if limit < 0:
        raise ValueError(f"Invalid horse limit: {limit}")

    if len(active) > limit:
        ordered = _by_age(active)
        return QuotaDecision(to_disable=ordered[limit:])

    spare = limit - len(active)
    if spare > 0 and disabled:
        return QuotaDecision(to_reactivate=_by_age(disabled)[:spare])

    return QuotaDecision()


def disabled_reason_for(
    trigger: ChangeTrigger,
    change_type: PlanChangeType,
) -> DisabledReason:
    if trigger == ChangeTrigger.EXPIRATION:
        return DisabledReason.SUBSCRIPTION_EXPIRED
    if change_type == PlanChangeType.DOWNGRADE:
        return DisabledReason.PLAN_DOWNGRADE
    return DisabledReason.PLAN_LIMIT_EXCEEDED


@dataclass
class EnforcementResult:
    """Outcome of one quota enforcement run, mirrored into plan_changes."""
    user_id: UUID
    old_plan_id: Optional[UUID]
    new_plan_id: Optional[UUID]
    old_limit: SlotLimit
    new_limit: SlotLimit
    change_type: PlanChangeType
    active_count: int
    disabled_count: int
    total_count: int
    disabled_ids: List[UUID] = field(default_factory=list)
    reactivated_ids: List[UUID] = field(default_factory=list)

    @property
    def horses_disabled(self) -> int:
        return len(self.disabled_ids)

    @property
    def horses_reactivated(self) -> int:
        return len(self.reactivated_ids)

    @property
    def horses_affected(self) -> int:
        return self.horses_disabled + self.horses_reactivated
