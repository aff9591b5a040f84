import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, TypeVar

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from starlette.responses import JSONResponse

from services.decision_server.app.config import settings
from services.decision_server.app.conversation import ConversationService
from services.decision_server.app.directory import build_directory
from services.decision_server.app.errors import SessionClosedError, SessionNotFoundError
from services.decision_server.app.payments import build_gateway
from services.decision_server.app.repository import SqlSessionStore, build_store
from services.decision_server.app.schemas import (
    EndConversationResponse,
    EscalateResponse,
    PostMessageRequest,
    PostMessageResponse,
    SessionRequest,
    SessionView,
    StartConversationRequest,
    StartConversationResponse,
)

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("decision_server")

store = build_store(settings)
service = ConversationService(
    store=store,
    directory=build_directory(settings.demo_mode, settings.order_service_url, settings.collaborator_timeout_s),
    gateway=build_gateway(settings.demo_mode, settings.payment_gateway_url, settings.collaborator_timeout_s),
    config=settings,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if isinstance(store, SqlSessionStore):
        store.create_tables()
    logger.info("decision_server_ready backend=%s demo_mode=%s", settings.session_backend, settings.demo_mode)
    yield


app = FastAPI(title="delivery-support-decision-server", lifespan=lifespan)

ResT = TypeVar("ResT", bound=BaseModel)


def run_with_logging(operation: str, request: BaseModel, fn: Callable[[], ResT]) -> ResT:
    start = time.perf_counter()
    session_id = getattr(request, "session_id", None)
    try:
        response = fn()
    except (SessionNotFoundError, SessionClosedError) as exc:
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "operation_rejected operation=%s session_id=%s latency_ms=%s error=%s",
            operation,
            session_id,
            latency_ms,
            exc,
        )
        raise
    except Exception:
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("operation_error operation=%s session_id=%s latency_ms=%s", operation, session_id, latency_ms)
        raise
    latency_ms = int((time.perf_counter() - start) * 1000)
    logger.info("operation_success operation=%s session_id=%s latency_ms=%s", operation, session_id, latency_ms)
    return response


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/conversation/start", response_model=StartConversationResponse)
def start_conversation(request: StartConversationRequest) -> StartConversationResponse:
    def _run() -> StartConversationResponse:
        session, welcome = service.start(request.customer_id, request.order_ids)
        return StartConversationResponse(session_id=session.id, message=welcome)

    return run_with_logging("start", request, _run)


@app.post("/api/conversation/message", response_model=PostMessageResponse)
def post_message(request: PostMessageRequest) -> PostMessageResponse:
    def _run() -> PostMessageResponse:
        reply, escalated = service.post_message(request.session_id, request.message)
        return PostMessageResponse(response=reply, escalated=escalated)

    return run_with_logging("message", request, _run)


@app.post("/api/conversation/escalate", response_model=EscalateResponse)
def escalate_conversation(request: SessionRequest) -> EscalateResponse:
    def _run() -> EscalateResponse:
        session, ticket = service.escalate(request.session_id)
        return EscalateResponse(escalated=session.escalated, priority=ticket.priority, ticket_id=ticket.ticket_id)

    return run_with_logging("escalate", request, _run)


@app.post("/api/conversation/end", response_model=EndConversationResponse)
def end_conversation(request: SessionRequest) -> EndConversationResponse:
    def _run() -> EndConversationResponse:
        service.end(request.session_id)
        return EndConversationResponse(success=True)

    return run_with_logging("end", request, _run)


@app.post("/api/conversation/session", response_model=SessionView)
def get_session(request: SessionRequest) -> SessionView:
    def _run() -> SessionView:
        session = service.get_session(request.session_id)
        return SessionView(
            session_id=session.id,
            customer_id=session.customer_id,
            status=session.status,
            escalated=session.escalated,
            messages=session.messages,
            resolutions=session.resolutions,
        )

    return run_with_logging("session", request, _run)


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(_, exc: SessionNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "session_not_found"})


@app.exception_handler(SessionClosedError)
async def session_closed_handler(_, exc: SessionClosedError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": "session_ended"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(_, exc: Exception) -> Any:
    if isinstance(exc, HTTPException):
        raise exc
    return JSONResponse(status_code=500, content={"detail": "internal_error"})
