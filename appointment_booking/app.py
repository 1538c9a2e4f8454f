"""FastAPI WebSocket server driving appointment booking sessions."""

import json
import logging
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from appointment_booking.config import get_settings
from appointment_booking.session_manager import SessionManager

logger = logging.getLogger(__name__)

app = FastAPI(title=get_settings().app_name)

session_manager = SessionManager()

active_connections: dict[str, WebSocket] = {}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Handle WebSocket connections and messages.

    Each message names a session and an action; the reply carries the
    session's state after the action was applied. A failing message is
    answered with an error and the connection stays open.
    """
    await websocket.accept()

    try:
        while True:
            data = await websocket.receive_text()
            try:
                reply = await _handle_message(websocket, data)
            except Exception as e:
                logger.exception("Handling a WebSocket message failed")
                reply = {"error": f"Internal error: {e}", "code": "internal_error"}
            await websocket.send_text(json.dumps(reply))

    except WebSocketDisconnect:
        active_connections.pop(
            next((sid for sid, conn in active_connections.items() if conn == websocket), None),
            None,
        )


async def _handle_message(websocket: WebSocket, data: str) -> dict[str, Any]:
    try:
        message_data = json.loads(data)
    except json.JSONDecodeError:
        return {"error": "Message is not valid JSON", "code": "bad_json"}
    if not isinstance(message_data, dict):
        return {"error": "Message must be a JSON object", "code": "bad_request"}

    # TODO(auth): the token is only forwarded to the API client; verify it here.
    session_id = message_data.get("session_id")
    token = message_data.get("token")
    action = message_data.get("action")
    params = message_data.get("params") or {}

    if not session_id or not token or not action:
        return {"error": "Missing session_id, token or action", "code": "bad_request"}
    if not isinstance(params, dict):
        return {"error": "params must be a JSON object", "code": "bad_request"}

    active_connections[str(session_id)] = websocket

    return await session_manager.process_event(str(session_id), str(token), str(action), params)


@app.get("/")
async def root():
    """Root endpoint providing basic API information."""
    return {"message": "Appointment booking API. Connect to /ws via WebSocket."}
