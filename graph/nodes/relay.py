from graph.state import SubmissionState
from tools.relay import ScriptRelay, RelayError, RelayTimeout, TooManyRedirectsError
from loguru import logger

script_relay = ScriptRelay()

async def relay(state: SubmissionState) -> SubmissionState:
    """Forward the sanitized submission to Apps Script."""
    action = state["action"]
    logger.info(f"Relaying {action} submission {state.get('log_id', '-')}")

    try:
        result = await script_relay.forward(state["forward"])
        state["relay_status"] = result.status_code
        state["relay_body"] = result.body

    except RelayTimeout as e:
        logger.error(f"Relay timed out for {action} submission {state.get('log_id', '-')}: {e}")
        state["status_code"] = 500
        state["response"] = {"error": "Upstream timeout", "detail": str(e)}

    except TooManyRedirectsError as e:
        logger.error(f"Relay redirect loop for {action} submission {state.get('log_id', '-')}: {e}")
        state["status_code"] = 500
        state["response"] = {"error": "Too many redirects", "detail": str(e)}

    except RelayError as e:
        logger.error(f"Relay failed for {action} submission {state.get('log_id', '-')}: {e}")
        state["status_code"] = 500
        state["response"] = {"error": "Failed to forward data", "detail": str(e)}

    return state
