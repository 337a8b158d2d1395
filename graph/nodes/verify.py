from graph.state import SubmissionState
from tools.turnstile import TurnstileVerifier
from loguru import logger

TOKEN_FIELD = "turnstileToken"

# Actions submitted from a page that renders the Turnstile widget
VERIFIED_ACTIONS = {"landing"}

turnstile_verifier = TurnstileVerifier()

async def verify(state: SubmissionState) -> SubmissionState:
    """Check the human-verification token for actions that carry one."""
    action = state["action"]

    if action not in VERIFIED_ACTIONS or not turnstile_verifier.enabled:
        state["verified"] = True
        return state

    token = state.get("payload", {}).get(TOKEN_FIELD)
    state["verified"] = await turnstile_verifier.verify(token, state.get("client_ip"))

    if not state["verified"]:
        logger.warning(f"Verification failed for {action} submission {state.get('log_id', '-')}")
        state["status_code"] = 403
        state["response"] = {"error": "Verification failed"}

    return state
