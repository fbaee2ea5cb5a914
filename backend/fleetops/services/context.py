# Overview: Explicit per-call settings and caller context for the trip financial core.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional


# (event_code, payload) -> None. Invoked only after a successful commit.
NotificationSink = Callable[[str, dict], None]


@dataclass(frozen=True)
class LifecycleSettings:
    """
    Policy knobs for the core. Built from app config per request and passed
    into every call; the core never reads a process-wide singleton.
    """
    allocation_budget_pct: Decimal = Decimal("100")
    period_lock_enforced: bool = True
    conflict_retry_attempts: int = 3

    def __post_init__(self):
        # An expense is never more than fully allocated
        budget = self.allocation_budget_pct
        if not isinstance(budget, Decimal) or not budget.is_finite() or not (0 < budget <= 100):
            raise ValueError(f"allocation_budget_pct must be greater than 0 and at most 100, got {budget!r}")
        if self.conflict_retry_attempts < 1:
            raise ValueError("conflict_retry_attempts must be at least 1")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "LifecycleSettings":
        raw_budget = config.get("ALLOCATION_BUDGET_PCT", "100")
        try:
            budget = Decimal(str(raw_budget))
        except InvalidOperation:
            raise ValueError(f"ALLOCATION_BUDGET_PCT is not a number: {raw_budget!r}") from None
        return cls(
            allocation_budget_pct=budget,
            period_lock_enforced=bool(config.get("PERIOD_LOCK_ENFORCED", True)),
            conflict_retry_attempts=int(config.get("CONFLICT_RETRY_ATTEMPTS", 3)),
        )


DEFAULT_SETTINGS = LifecycleSettings()


@dataclass(frozen=True)
class TransitionContext:
    """
    Who is acting, plus the inputs a specific transition needs.

    arrival_time / distance_km are only read by `complete`.
    """
    user_id: Optional[int] = None
    arrival_time: Optional[datetime] = None
    distance_km: Optional[Decimal] = None
    settings: LifecycleSettings = field(default=DEFAULT_SETTINGS)
    notify: Optional[NotificationSink] = None
