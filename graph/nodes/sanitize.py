from graph.state import SubmissionState
from graph.nodes.verify import TOKEN_FIELD

# Transport-only fields that must never reach the spreadsheet
STRIPPED_FIELDS = {TOKEN_FIELD}

async def sanitize(state: SubmissionState) -> SubmissionState:
    """Build the payload that is relayed downstream."""
    payload = state.get("payload", {})
    state["forward"] = {key: value for key, value in payload.items() if key not in STRIPPED_FIELDS}
    return state
