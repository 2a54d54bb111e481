import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from .agents import build_toolchain, create_default_agent
from .config import Settings
from .orchestrator import LoopOutcome
from .service import MessageService

load_dotenv()

logger = logging.getLogger(__name__)


class UserMessage(BaseModel):
    content: str


def outcome_to_dict(outcome: LoopOutcome) -> dict:
    return {
        "ok": outcome.ok,
        "agent": outcome.agent,
        "reply": outcome.text,
        "error": str(outcome.error) if outcome.error else None,
        "error_type": type(outcome.error).__name__ if outcome.error else None,
        "turns": outcome.turns,
    }


def create_app(service: Optional[MessageService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the chat API around one shared MessageService.

    Without a service, one is created on first use from ``Settings.from_env()``
    with the default assistant agent.
    """
    state = {"service": service, "toolchain": None}

    def get_service() -> MessageService:
        if state["service"] is None:
            app_settings = settings or Settings.from_env()
            toolchain = build_toolchain(app_settings)
            state["toolchain"] = toolchain
            state["service"] = MessageService(
                create_default_agent(app_settings, toolchain), settings=app_settings
            )
        return state["service"]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if state["toolchain"] is not None:
            await state["toolchain"].close()

    app = FastAPI(lifespan=lifespan)

    @app.get("/api/messages")
    async def list_messages():
        service = get_service()
        return {
            "messages": [m.to_dict() for m in service.messages],
            "running": service.is_running,
        }

    @app.post("/api/messages")
    async def post_message(body: UserMessage):
        if not body.content.strip():
            raise HTTPException(status_code=400, detail="Message content is empty")
        service = get_service()
        outcome = await service.submit(body.content)
        return {
            "outcome": outcome_to_dict(outcome),
            "messages": [m.to_dict() for m in service.messages],
        }

    @app.delete("/api/messages/{message_id}")
    async def delete_message(message_id: str):
        removed = get_service().delete_message(message_id)
        if not removed:
            raise HTTPException(status_code=404, detail=f"Message {message_id} not found")
        return {"deleted": [m.id for m in removed]}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        await handle_websocket_session(websocket, get_service())

    return app


async def handle_websocket_session(websocket: WebSocket, service: MessageService):
    """Stream conversation changes to the client and take its requests.

    Client messages: ``{"type": "user_message", "content": ...}`` and
    ``{"type": "delete", "message_id": ...}``.
    """
    queue = service.subscribe()
    turns = set()

    await websocket.send_text(
        json.dumps(
            {"type": "history", "messages": [m.to_dict() for m in service.messages]},
            ensure_ascii=False,
        )
    )

    async def forward_events():
        while True:
            action, payload = await queue.get()
            if action == "outcome":
                data = {"type": "outcome", "outcome": outcome_to_dict(payload)}
            else:
                data = {"type": action, "message": payload.to_dict()}
            await websocket.send_text(json.dumps(data, ensure_ascii=False))

    async def run_turn(content: str):
        outcome = await service.submit(content)
        # queued behind the turn's own appends
        queue.put_nowait(("outcome", outcome))

    forwarder = asyncio.create_task(forward_events())
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"SYSTEM: Ignoring non-JSON websocket message: {data[:100]}")
                continue

            msg_type = message_data.get("type", "user_message")
            if msg_type == "user_message":
                content = message_data.get("content", "")
                if content.strip():
                    turn = asyncio.create_task(run_turn(content))
                    turns.add(turn)
                    turn.add_done_callback(turns.discard)
            elif msg_type == "delete":
                service.delete_message(message_data.get("message_id", ""))
            else:
                logger.warning(f"SYSTEM: Unknown websocket message type: {msg_type}")
    except WebSocketDisconnect:
        logger.info("SYSTEM: Client disconnected")
    finally:
        forwarder.cancel()
        for turn in list(turns):
            turn.cancel()
        service.unsubscribe(queue)


app = create_app()
