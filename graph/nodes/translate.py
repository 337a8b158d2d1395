import json
from graph.state import SubmissionState
from loguru import logger

# Only present when Apps Script bounced the request to Google sign-in
AUTH_PAGE_MARKER = "accounts.google.com"

def translate_response(status_code: int, body: str):
    """Turn the final Apps Script response into the reply body for the caller."""
    try:
        return json.loads(body)
    except ValueError:
        pass

    if AUTH_PAGE_MARKER in body:
        logger.error("Apps Script returned the Google sign-in page; check the deployment's access setting")
        return {
            "status": "config_error",
            "message": "Apps Script deployment requires sign-in; set 'Who has access' to 'Anyone'",
        }

    # Apps Script sometimes wraps its output in HTML; the row is usually saved anyway
    return {
        "status": "forwarded",
        "httpStatus": status_code,
        "message": "Request forwarded to Google Apps Script",
    }

async def translate(state: SubmissionState) -> SubmissionState:
    """Reply 200 with whatever could be made of the relay result."""
    state["status_code"] = 200
    state["response"] = translate_response(state["relay_status"], state.get("relay_body", ""))
    return state
