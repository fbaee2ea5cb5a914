# Overview: Shared JSON response helpers for core Outcome results.

from flask import jsonify, current_app

from ..services.context import LifecycleSettings
from ..services.outcomes import REFUSAL_CONSTRAINT, REFUSAL_PERIOD_LOCK


# Refusal kind -> HTTP status
REFUSAL_STATUS = {
    REFUSAL_CONSTRAINT: 409,
    REFUSAL_PERIOD_LOCK: 423,
}


def current_settings() -> LifecycleSettings:
    return LifecycleSettings.from_config(current_app.config)


def outcome_response(outcome, entity_key: str, *, success_status: int = 200):
    """ok -> success_status; refusals -> 400 / 409 / 423 with every reason."""
    body = outcome.to_dict(entity_key)
    if outcome.ok:
        return jsonify(body), success_status

    body["error"] = outcome.reasons[0] if len(outcome.reasons) == 1 else "Request refused"
    return jsonify(body), REFUSAL_STATUS.get(outcome.kind, 400)
