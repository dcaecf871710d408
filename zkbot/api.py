"""FastAPI ingress for GitHub webhooks and ledger notifications.

Endpoints:
- POST /webhook: GitHub webhook deliveries
- POST /ledger/events: notifications from the ledger watcher
- GET /api/issues/{issue_id}/status: reconcile and report an issue's state
- GET /health
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError

from .bot import ZkBot
from .config import BotConfig
from .errors import BotError
from .events import InboundEvent, parse_github_event, parse_ledger_event

logger = logging.getLogger(__name__)

routes = APIRouter()


class DispatchResponse(BaseModel):
    """Outcome of dispatching one event."""

    status: str


class IssueStatus(BaseModel):
    """Derived lifecycle state of an issue."""

    issue_id: int
    status: str
    release_state: str
    pending: Optional[dict] = None


async def _json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    return payload


async def _dispatch(request: Request, event: InboundEvent):
    bot: ZkBot = request.app.state.bot
    try:
        outcome = await bot.dispatch(event)
    except Exception as e:
        logger.exception(f"Error processing {event.event_type}.{event.action}: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return DispatchResponse(status=outcome)


@routes.post("/webhook", response_model=DispatchResponse)
async def github_webhook(
    request: Request,
    x_github_event: str = Header(...),
    x_github_delivery: Optional[str] = Header(None),
):
    """Receive a GitHub webhook delivery.

    Unhandled event types are acknowledged with status "ignored" so the
    sender does not retry them.
    """
    payload = await _json_body(request)
    logger.info(f"Received GitHub event: {x_github_event} ({x_github_delivery})")

    try:
        event = parse_github_event(x_github_event, payload)
    except PayloadValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return await _dispatch(request, event)


@routes.post("/ledger/events", response_model=DispatchResponse)
async def ledger_event(request: Request):
    """Receive a ledger notification such as solution-verified."""
    payload = await _json_body(request)

    try:
        event = parse_ledger_event(payload)
    except PayloadValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return await _dispatch(request, event)


@routes.get("/api/issues/{issue_id}/status", response_model=IssueStatus)
async def get_issue_status(request: Request, issue_id: int):
    """Check an issue's state, settling any transaction reported as pending."""
    bot: ZkBot = request.app.state.bot
    try:
        return IssueStatus(**await bot.issue_status(issue_id))
    except BotError as e:
        raise HTTPException(status_code=503, detail=str(e))


@routes.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "zkbot"}


def create_app(bot: Optional[ZkBot] = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        bot: An already set-up bot. When omitted, one is built from the
             environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.bot is None:
            configured = ZkBot(BotConfig.from_env())
            configured.set_up()
            app.state.bot = configured
        yield

    app = FastAPI(
        title="zkbot",
        description="Zero-knowledge code review bounty bot",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.bot = bot
    app.include_router(routes)
    return app


app = create_app()
