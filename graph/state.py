from typing import TypedDict, Optional, List, Dict, Any

class SubmissionState(TypedDict, total=False):
    """State shape for the submission relay workflow."""
    action: str                      # "landing" | "scorecard"
    payload: Dict[str, Any]          # submission as received
    client_ip: Optional[str]
    log_id: str                      # truncated submission_id, safe to log
    errors: List[str]                # validation violations
    verified: bool
    forward: Dict[str, Any]          # sanitized payload sent to Apps Script
    relay_status: int
    relay_body: str
    status_code: int                 # reply to the caller
    response: Any
