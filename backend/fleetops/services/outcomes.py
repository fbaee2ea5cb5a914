# Overview: Refusal taxonomy and structured outcomes returned by the trip financial core.

"""
Refusals vs failures
====================

A refusal means "no": guards were evaluated against committed data and at
least one failed. Nothing was mutated (apart from a blocked audit entry for
trip mutations). Refusals carry every failed condition, never just the first.

A store failure (any SQLAlchemyError) means "unknown": it is not a refusal and
is never converted into one. It propagates to the caller unchanged.

Refusals are raised internally as RefusalError subclasses and converted into
an Outcome at each public service function, so they never escape the core as
exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


REFUSAL_VALIDATION = "validation"
REFUSAL_PERIOD_LOCK = "period_lock"
REFUSAL_CONSTRAINT = "constraint"


class NotFoundError(LookupError):
    """Referenced trip / expense / allocation does not exist."""


class RefusalError(Exception):
    """Base for guard refusals. Always carries a non-empty reasons list."""

    kind = REFUSAL_VALIDATION

    def __init__(self, reasons: list[str], *, detail: Optional[dict] = None):
        if not reasons:
            raise ValueError("A refusal needs at least one reason")
        super().__init__("; ".join(reasons))
        self.reasons = list(reasons)
        self.detail = detail or {}


class ValidationRefusal(RefusalError):
    """One or more guard conditions failed."""

    kind = REFUSAL_VALIDATION


class PeriodLockRefusal(RefusalError):
    """Record is dated inside a closed accounting period; applies regardless of status."""

    kind = REFUSAL_PERIOD_LOCK


class ConstraintViolation(RefusalError):
    """Allocation budget exceeded or direct-assignment/allocation exclusivity broken."""

    kind = REFUSAL_CONSTRAINT


@dataclass
class Outcome:
    """
    Result of a mutating core operation.

    ok=True: `entity` holds the updated row.
    ok=False: `reasons` lists every failed condition and `kind` names the
    refusal class; `entity` may hold the unchanged row for display.
    """
    ok: bool
    entity: Any = None
    reasons: list[str] = field(default_factory=list)
    kind: Optional[str] = None
    detail: dict = field(default_factory=dict)

    @classmethod
    def success(cls, entity: Any) -> "Outcome":
        return cls(ok=True, entity=entity)

    @classmethod
    def refused(cls, error: RefusalError, entity: Any = None) -> "Outcome":
        return cls(ok=False, entity=entity, reasons=list(error.reasons), kind=error.kind, detail=dict(error.detail))

    def to_dict(self, entity_key: str) -> dict:
        body: dict = {"ok": self.ok}
        if self.entity is not None:
            body[entity_key] = self.entity.to_dict()
        if not self.ok:
            body["reasons"] = self.reasons
            body["kind"] = self.kind
            if self.detail:
                body["detail"] = self.detail
        return body


def merge_refusals(errors: list[RefusalError]) -> RefusalError:
    """
    Combine several refusals into one, keeping every reason.

    A period lock anywhere in the set wins the kind, since it applies
    regardless of status; otherwise a constraint violation wins over plain
    validation.
    """
    reasons: list[str] = []
    detail: dict = {}
    for err in errors:
        reasons.extend(err.reasons)
        detail.update(err.detail)
    kinds = {err.kind for err in errors}
    if REFUSAL_PERIOD_LOCK in kinds:
        return PeriodLockRefusal(reasons, detail=detail)
    if REFUSAL_CONSTRAINT in kinds:
        return ConstraintViolation(reasons, detail=detail)
    return ValidationRefusal(reasons, detail=detail)
