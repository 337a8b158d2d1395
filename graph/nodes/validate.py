import math
import re
from typing import Any, Callable, Dict, List, Optional
from graph.state import SubmissionState
from loguru import logger

EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
EMAIL_MAX = 254

LANDING_TEXT_FIELDS = [
    "source", "landing_url", "referrer",
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
]
LANDING_TEXT_MAX = 500

PILLAR_FIELDS = [
    "pillar_financials", "pillar_operations", "pillar_customers", "pillar_team", "pillar_systems",
]
SEGMENTS = ("A", "B", "C", "D", "E")
SCORECARD_TEXT_FIELDS = ["company", "industry", "role"]
SCORECARD_TEXT_MAX = 300

def _present(payload: Dict[str, Any], field: str) -> bool:
    return payload.get(field) is not None

def _check_length(payload: Dict[str, Any], field: str, limit: int, errors: List[str]) -> None:
    value = payload[field]
    if not isinstance(value, str):
        errors.append(f"{field} must be a string")
    elif len(value) > limit:
        errors.append(f"{field} must be at most {limit} characters")

def _to_number(value: Any) -> Optional[float]:
    """Parse a JSON number or numeric string. Returns None when it isn't one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        try:
            number = float(value)
        except OverflowError:
            # Too large for a float, but still a number and out of any range
            number = math.copysign(math.inf, value)
    elif isinstance(value, float):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number

def _check_range(payload: Dict[str, Any], field: str, low: float, high: float, errors: List[str]) -> None:
    number = _to_number(payload[field])
    if number is None:
        errors.append(f"{field} must be a number")
    elif not low <= number <= high:
        errors.append(f"{field} must be between {low:g} and {high:g}")

def validate_landing(payload: Dict[str, Any]) -> List[str]:
    errors: List[str] = []

    email = payload.get("email")
    if email is None or email == "":
        errors.append("email is required")
    elif not isinstance(email, str):
        errors.append("email must be a string")
    elif len(email) > EMAIL_MAX:
        errors.append(f"email must be at most {EMAIL_MAX} characters")
    elif not EMAIL_RE.fullmatch(email):
        errors.append("email must be a valid email address")

    for field in LANDING_TEXT_FIELDS:
        if _present(payload, field):
            _check_length(payload, field, LANDING_TEXT_MAX, errors)

    return errors

def validate_scorecard(payload: Dict[str, Any]) -> List[str]:
    errors: List[str] = []

    if _present(payload, "email"):
        _check_length(payload, "email", EMAIL_MAX, errors)

    if _present(payload, "exit_score"):
        _check_range(payload, "exit_score", 0, 100, errors)

    for field in PILLAR_FIELDS:
        if _present(payload, field):
            _check_range(payload, field, 0, 20, errors)

    if _present(payload, "segment") and payload["segment"] not in SEGMENTS:
        errors.append(f"segment must be one of {', '.join(SEGMENTS)}")

    for field in SCORECARD_TEXT_FIELDS:
        if _present(payload, field):
            _check_length(payload, field, SCORECARD_TEXT_MAX, errors)

    return errors

# One ruleset per action; a new action only needs an entry here
RULESETS: Dict[str, Callable[[Dict[str, Any]], List[str]]] = {
    "landing": validate_landing,
    "scorecard": validate_scorecard,
}

def shape_error(payload: Any) -> Optional[str]:
    """
    Check the overall payload shape before anything else looks at it.

    Returns:
        "missing_action" if the payload is not an object with a non-empty action,
        "unknown_action" if the action has no ruleset, None if the shape is fine
    """
    if not isinstance(payload, dict) or not payload.get("action"):
        return "missing_action"
    if not isinstance(payload["action"], str) or payload["action"] not in RULESETS:
        return "unknown_action"
    return None

async def validate(state: SubmissionState) -> SubmissionState:
    """Apply the action's ruleset and reject the submission on any violation."""
    action = state["action"]
    errors = RULESETS[action](state.get("payload", {}))
    state["errors"] = errors

    if errors:
        logger.info(f"Validation failed for {action} submission {state.get('log_id', '-')}: {len(errors)} violation(s)")
        state["status_code"] = 400
        state["response"] = {"error": "Validation failed", "details": errors}

    return state
