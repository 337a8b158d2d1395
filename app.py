import asyncio
import os
import time
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger
from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Load environment variables before the nodes build their clients
load_dotenv()

# Import our modules
from graph.state import SubmissionState
from graph.nodes.validate import validate, shape_error
from graph.nodes.verify import verify, turnstile_verifier
from graph.nodes.sanitize import sanitize
from graph.nodes.relay import relay, script_relay
from graph.nodes.translate import translate
from tools.idempotency import Idem
from tools.rate_limit import RateLimiter

VERSION = "1.0.0"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

SHAPE_ERRORS = {
    "missing_action": "Missing payload or action",
    "unknown_action": "Unknown action",
}

# Configure logging
logger.add(
    os.getenv("LOG_FILE", "logs/proxy.log"),
    rotation="1 day",
    retention="7 days",
    level=os.getenv("LOG_LEVEL", "INFO"),
)

# Ledgers live as long as the process; other instances keep their own
rate_limiter = RateLimiter()
idem = Idem()

async def sweep_ledgers(interval: float):
    """Periodically drop expired rate-limit and dedup entries."""
    while True:
        await asyncio.sleep(interval)
        removed = rate_limiter.sweep() + idem.purge()
        if removed:
            logger.info(f"Ledger sweep removed {removed} entries")

@asynccontextmanager
async def lifespan(app: FastAPI):
    interval = float(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "300"))
    task = asyncio.create_task(sweep_ledgers(interval))
    logger.info("Starting Landing Submission Proxy")
    try:
        yield
    finally:
        task.cancel()

# Initialize FastAPI app
app = FastAPI(
    title="Landing Submission Proxy",
    description="Validates landing page submissions and relays them to Google Apps Script",
    version=VERSION,
    lifespan=lifespan,
)

# Build the submission workflow
def build_workflow():
    """Build the submission processing workflow."""
    workflow = StateGraph(SubmissionState)

    # Add nodes
    workflow.add_node("validate", validate)
    workflow.add_node("verify", verify)
    workflow.add_node("sanitize", sanitize)
    workflow.add_node("relay", relay)
    workflow.add_node("translate", translate)

    # A node that decided the reply stops the workflow
    def continue_or_reply(next_node: str):
        def decide(state: SubmissionState) -> str:
            return "reply" if state.get("status_code") else next_node
        return decide

    workflow.add_edge(START, "validate")
    workflow.add_conditional_edges(
        "validate", continue_or_reply("verify"), {"verify": "verify", "reply": END}
    )
    workflow.add_conditional_edges(
        "verify", continue_or_reply("sanitize"), {"sanitize": "sanitize", "reply": END}
    )
    workflow.add_edge("sanitize", "relay")
    workflow.add_conditional_edges(
        "relay", continue_or_reply("translate"), {"translate": "translate", "reply": END}
    )
    workflow.add_edge("translate", END)

    return workflow.compile()

app_graph = build_workflow()

def reply(status_code: int, content, headers: Optional[dict] = None) -> JSONResponse:
    """JSON reply carrying the CORS headers."""
    return JSONResponse(status_code=status_code, content=content, headers={**CORS_HEADERS, **(headers or {})})

def client_ip(req: Request) -> str:
    """Best-effort caller IP behind the platform's proxy."""
    forwarded = req.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = req.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return req.client.host if req.client else "unknown"

@app.api_route(
    "/api/submit",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
async def submit(req: Request):
    """
    Landing page submission endpoint.

    Expected payload:
    {
        "action": "landing",
        "submission_id": "4f1c2a9e-...",
        "email": "jane@company.com",
        "utm_source": "linkedin",
        "turnstileToken": "..."
    }
    """
    if req.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)

    if req.method != "POST":
        return reply(405, {"error": "Method not allowed"}, headers={"Allow": "POST"})

    ip = client_ip(req)
    if not rate_limiter.check(ip):
        logger.warning("Rate limit exceeded")
        return reply(429, {"error": "Too many requests"})

    try:
        try:
            payload = await req.json()
        except ValueError:
            payload = None

        problem = shape_error(payload)
        if problem:
            return reply(400, {"error": SHAPE_ERRORS[problem]})

        action = payload["action"]
        submission_id = payload.get("submission_id")
        log_id = str(submission_id)[:8] if submission_id else "-"
        logger.info(f"Received {action} submission {log_id}")

        # Without an identifier there is nothing to deduplicate on
        if submission_id and not idem.check_and_set(str(submission_id)):
            logger.warning(f"Duplicate {action} submission ignored: {log_id}")
            return reply(200, {"status": "duplicate", "message": "Submission already processed"})

        start_time = time.time()
        result = await app_graph.ainvoke({
            "action": action,
            "payload": payload,
            "client_ip": ip,
            "log_id": log_id,
            "errors": [],
        })

        logger.info(
            f"{action} submission {log_id} finished with {result['status_code']} "
            f"in {time.time() - start_time:.2f}s"
        )
        return reply(result["status_code"], result["response"])

    except Exception as e:
        # Exception text can echo payload fields, so only the type is logged
        logger.error(f"Submission processing failed: {type(e).__name__}")
        return reply(500, {"error": "Internal server error"})

@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": VERSION,
        "services": {
            "verification": "enabled" if turnstile_verifier.enabled else "open",
            "relay": script_relay.url.split("?")[0],
            "workflow": "ready",
        },
        "ledgers": {
            "rate_limit": len(rate_limiter),
            "dedup": len(idem),
        },
    }

# Error handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Methods outside the routed list (TRACE, CONNECT...) still get the gate's 405
    if exc.status_code == 405 and request.url.path == "/api/submit":
        return reply(405, {"error": "Method not allowed"}, headers={"Allow": "POST"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {type(exc).__name__}")
    return reply(500, {"error": "Internal server error"})

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
