import json
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel
from sqlalchemy.orm import Session

from agent_relay import __version__
from agent_relay.auth import require_key
from agent_relay.config import Settings, get_settings
from agent_relay.database import Database, get_db
from agent_relay.errors import (
    AdmissionError,
    AuthError,
    MissingKeyError,
    RelayError,
    StorageError,
    ValidationError,
)
from agent_relay.logger import setup_logger
from agent_relay.service import RelayService


class RegisterIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = ""

class RegisterOut(BaseModel):
    agentId: str
    apiKey: str
    name: str

class SendMessageOut(BaseModel):
    ok: bool
    messageId: int

class MessageOut(BaseModel):
    id: int
    agentId: str
    agentName: str
    content: str
    room: str
    timestamp: str

class MessagesOut(BaseModel):
    messages: List[MessageOut]

class AgentOut(BaseModel):
    id: str
    name: str
    description: str
    createdAt: str
    lastSeen: str

class AgentsOut(BaseModel):
    agents: List[AgentOut]

class RoomsOut(BaseModel):
    rooms: List[str]


def relay(request: Request) -> RelayService:
    return request.app.state.relay


# HTTP status per error kind; subclasses before their bases
ERROR_STATUS = (
    (ValidationError, 400),
    (MissingKeyError, 401),
    (AuthError, 403),
    (AdmissionError, 429),
    (StorageError, 500),
)


def _error_response(exc: RelayError) -> JSONResponse:
    status = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    headers = None
    if isinstance(exc, AdmissionError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=status, content={"error": str(exc)}, headers=headers)


async def _read_json(request: Request) -> dict:
    """Request body as a dict; anything unparseable or not an object counts as empty."""
    try:
        payload = json.loads(await request.body())
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logger(settings.log_level, settings.log_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.db.init_db()
        logger.info(f"Agent relay {__version__} up (cooldown {settings.cooldown_seconds:g}s)")
        yield
        app.state.db.dispose()
        logger.info("Agent relay stopped")

    app = FastAPI(
        title="Agent Relay API",
        version=__version__,
        description="Message relay for agents: rooms, polling and live push",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = Database(settings.database_url)
    app.state.relay = RelayService.build(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],      # clients send X-Agent-Key
    )

    @app.exception_handler(RelayError)
    async def relay_error(request: Request, exc: RelayError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "invalid request body"})

    @app.post("/api/register", response_model=RegisterOut)
    def register(payload: RegisterIn, db: Session = Depends(get_db), svc: RelayService = Depends(relay)):
        agent, api_key = svc.register(db, payload.name, payload.description)
        return RegisterOut(agentId=agent.id, apiKey=api_key, name=agent.name)

    @app.post("/api/message", response_model=SendMessageOut)
    async def send_message(request: Request, api_key: str = Depends(require_key),
                           db: Session = Depends(get_db), svc: RelayService = Depends(relay)):
        # body is read after the key check so auth and admission errors win over a bad body
        payload = await _read_json(request)
        msg = await run_in_threadpool(svc.send, db, api_key, payload.get("content"), payload.get("room"))
        return SendMessageOut(ok=True, messageId=msg.id)

    @app.get("/api/messages", response_model=MessagesOut)
    def get_messages(room: Optional[str] = None, since: Optional[str] = None,
                     db: Session = Depends(get_db), svc: RelayService = Depends(relay)):
        return {"messages": [m.as_dict() for m in svc.messages(db, room, since)]}

    @app.get("/api/messages/all", response_model=MessagesOut)
    def get_all_messages(since: Optional[str] = None,
                         db: Session = Depends(get_db), svc: RelayService = Depends(relay)):
        return {"messages": [m.as_dict() for m in svc.messages_all(db, since)]}

    @app.get("/api/agents", response_model=AgentsOut)
    def list_agents(db: Session = Depends(get_db), svc: RelayService = Depends(relay)):
        return {"agents": [a.as_dict() for a in svc.agents(db)]}

    @app.get("/api/rooms", response_model=RoomsOut)
    def list_rooms(db: Session = Depends(get_db), svc: RelayService = Depends(relay)):
        return {"rooms": svc.rooms(db)}

    @app.websocket("/ws")
    async def live(websocket: WebSocket):
        await websocket.app.state.relay.live.serve(websocket)

    @app.get("/")
    def home():
        # quick sanity page
        return {"status": "up", "docs": "/docs", "health": "/healthz"}

    @app.get("/healthz")
    def health():
        return {"ok": True}

    return app


def main():
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, access_log=False)


if __name__ == "__main__":
    main()
