"""
WebSocket endpoint for docent question answering.

Handles the WebSocket protocol:
- ask: stream an answer about the current artwork
- set_artwork: recreate the session and cache a new fixed prefix
"""

import json
import logging
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .. import runtime as runtime_module
from ..protocol.errors import DocentError
from ..protocol.messages import (
    AnswerDoneMessage,
    ArtworkSetMessage,
    AskMessage,
    ErrorMessage,
    MessageType,
    SetArtworkMessage,
    TokenMessage,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def send_error(websocket: WebSocket, code: str, message: str) -> None:
    """Send error message to client."""
    error = ErrorMessage(code=code, message=message)
    await websocket.send_json(error.model_dump(mode="json"))


def parse_message(data: dict[str, Any]) -> AskMessage | SetArtworkMessage | None:
    """Parse incoming JSON message into typed message object."""
    msg_type = data.get("type")

    try:
        if msg_type == MessageType.ASK:
            return AskMessage.model_validate(data)
        elif msg_type == MessageType.SET_ARTWORK:
            return SetArtworkMessage.model_validate(data)
        else:
            return None
    except ValidationError as e:
        logger.debug(f"Message validation error: {e}")
        return None


async def stream_answer(websocket: WebSocket, question: str) -> None:
    """Stream one answer to the client, then send answer_done."""
    rt = runtime_module.get_runtime()
    stream = rt.streamer.stream(question)

    async with aclosing(stream):
        async for event in stream:
            msg = TokenMessage(text=event.text, index=event.index)
            await websocket.send_json(msg.model_dump(mode="json"))

    result = stream.result
    done = AnswerDoneMessage(finish_reason=result.finish_reason, stats=result.stats)
    await websocket.send_json(done.model_dump(mode="json"))


async def set_artwork(websocket: WebSocket, msg: SetArtworkMessage) -> None:
    """Re-prime the session for a new artwork."""
    rt = runtime_module.get_runtime()
    result = await rt.streamer.run_serialized(rt.reprime, msg.artwork)
    if not result.ok:
        await send_error(websocket, result.kind.value, result.message)
        return

    ack = ArtworkSetMessage(prefix_tokens=rt.session.prefix_state.token_count)
    await websocket.send_json(ack.model_dump(mode="json"))


@router.websocket("/ws/docent")
async def websocket_docent(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for docent answers.

    Protocol:
    1. Client sends set_artwork (optional when the service was primed at startup)
    2. Server responds with artwork_set
    3. Client sends ask with a question
    4. Server streams token messages, then answer_done with stats
    5. Repeat 1-4 as needed
    """
    await websocket.accept()

    try:
        while True:
            raw_data = await websocket.receive_text()

            try:
                data = json.loads(raw_data)
            except json.JSONDecodeError:
                await send_error(websocket, "INVALID_MESSAGE", "Invalid JSON")
                continue

            msg = parse_message(data)
            if msg is None:
                await send_error(
                    websocket,
                    "INVALID_MESSAGE",
                    f"Unknown message type: {data.get('type')}",
                )
                continue

            try:
                if isinstance(msg, AskMessage):
                    await stream_answer(websocket, msg.question)
                elif isinstance(msg, SetArtworkMessage):
                    await set_artwork(websocket, msg)

            except DocentError as e:
                await send_error(websocket, e.kind.value, e.message)
                continue

            except WebSocketDisconnect:
                raise

            except Exception as e:
                logger.exception("Unexpected error in docent websocket")
                await send_error(websocket, "INTERNAL_ERROR", str(e))
                continue

    except WebSocketDisconnect:
        logger.info("Client disconnected")
