# FastAPI server for the Graft superstep debugger.
# Provides a WebSocket endpoint so a browser UI can drive a debugging session and receive render events.

import os
import json
import asyncio
import logging
from typing import Dict, Any, List, Literal

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from debugger_client import DebuggerClient, DebuggerServerError
from editor import CaptureResult, EditorAdapter
from session_controller import SessionController, SessionStateError

# --- Logging Configuration ---
LOG_LEVEL = os.getenv("GRAFT_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("GRAFT_LOG_FILE")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
handlers = [logging.StreamHandler()]
if LOG_FILE:
    log_dir = os.path.dirname(LOG_FILE)
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
        except OSError:
            pass
    handlers.append(logging.FileHandler(LOG_FILE))

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, handlers=handlers)
logger = logging.getLogger("graft.server")

HOST = os.getenv("GRAFT_HOST", "0.0.0.0")
PORT = int(os.getenv("GRAFT_PORT", "8080"))

api = FastAPI(title="Graft Debugger")


class DebuggerCommand(BaseModel):
    """A command sent by the UI over the WebSocket."""
    command: Literal[
        "start", "next", "prev", "reload", "exit",
        "capture_vertex", "capture_master", "generate_test_graph",
    ]
    job_id: str | None = None
    vertex_id: str | None = None
    adj_list: str | None = None
    name: str | None = None


class WebSocketEditor(EditorAdapter):
    """Forwards every editor hook to the browser as a JSON event."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def _send(self, payload: Dict[str, Any]) -> None:
        await self.websocket.send_json(payload)

    async def set_mode(self, mode: str) -> None:
        await self._send({"status": "mode", "mode": mode})

    async def set_readonly(self, readonly: bool) -> None:
        await self._send({"status": "readonly", "readonly": readonly})

    async def show_superstep(self, superstep: int, can_step_backward: bool, can_step_forward: bool,
                             max_superstep: int) -> None:
        await self._send({
            "status": "superstep",
            "superstep": superstep,
            "can_step_backward": can_step_backward,
            "can_step_forward": can_step_forward,
            "max_superstep": max_superstep,
        })

    async def show_preloader(self) -> None:
        await self._send({"status": "preloader", "visible": True})

    async def hide_preloader(self) -> None:
        await self._send({"status": "preloader", "visible": False})

    async def build_graph(self, superstep: int, scenario: Dict[str, Dict[str, Any]], traced: List[str]) -> None:
        await self._send({"status": "render", "mode": "build", "superstep": superstep,
                          "scenario": scenario, "traced": traced})

    async def update_graph(self, superstep: int, scenario: Dict[str, Dict[str, Any]], traced: List[str]) -> None:
        await self._send({"status": "render", "mode": "update", "superstep": superstep,
                          "scenario": scenario, "traced": traced})

    async def notify(self, message: str, level: str = "info", timeout_ms: int | None = None) -> None:
        await self._send({"status": "notify", "level": level, "message": message, "timeout": timeout_ms})


async def _capture(controller: SessionController, command: DebuggerCommand) -> CaptureResult:
    if command.command == "capture_vertex":
        if not command.vertex_id:
            raise SessionStateError("A vertex id is required to capture a vertex.")
        return await controller.capture_vertex_scenario(command.vertex_id)
    if command.command == "capture_master":
        return await controller.capture_master_scenario()
    if not command.adj_list:
        raise SessionStateError("An adjacency list is required to generate a test graph.")
    return await controller.generate_test_graph(command.adj_list, command.name or "TestGraph")


async def handle_command(controller: SessionController, websocket: WebSocket, command: DebuggerCommand) -> None:
    """Runs one UI command against the controller and reports failures back to the UI."""
    logger.debug("Handling command %s", command.model_dump(exclude_none=True))
    try:
        if command.command == "start":
            await controller.start_debug_session(command.job_id)
        elif command.command == "next":
            await controller.step_forward()
        elif command.command == "prev":
            await controller.step_backward()
        elif command.command == "reload":
            await controller.reload_superstep()
        elif command.command == "exit":
            await controller.exit_debug_session()
        else:
            try:
                result = await _capture(controller, command)
            except DebuggerServerError as e:
                logger.warning("%s failed: %s", command.command, e)
                await websocket.send_json({"status": "capture_failed", "command": command.command,
                                           "message": e.message})
                return
            await websocket.send_json({"status": "capture", "command": command.command, **result.model_dump()})
    except SessionStateError as e:
        logger.info("Rejected command %s: %s", command.command, e)
        await websocket.send_json({"status": "error", "message": str(e)})
    except Exception as e:
        error_message = f"An error occurred: {type(e).__name__} - {e}"
        logger.exception("Command %s failed: %s", command.command, error_message)
        try:
            await websocket.send_json({"status": "error", "message": error_message})
        except Exception as exc:
            logger.debug("Failed to report command failure: %s", exc)


@api.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


@api.websocket("/ws/debugger")
async def websocket_endpoint(websocket: WebSocket):
    """
    The main WebSocket endpoint: one debugging session per connection.
    """
    logger.info("WebSocket connection attempt from %s", websocket.client)
    await websocket.accept()
    controller = SessionController(DebuggerClient(), WebSocketEditor(websocket))
    await websocket.send_json({"status": "mode", "mode": controller.mode.value})
    pending: set[asyncio.Task] = set()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                command = DebuggerCommand(**json.loads(raw))
            except (ValidationError, ValueError, TypeError) as e:
                await websocket.send_json({"status": "error", "message": f"Invalid command: {e}"})
                continue
            # Commands run concurrently so that stepping is never blocked by a slow fetch.
            task = asyncio.create_task(handle_command(controller, websocket, command))
            pending.add(task)
            task.add_done_callback(pending.discard)
    except WebSocketDisconnect:
        logger.info("Client disconnected.")
    except Exception as e:
        error_message = f"An error occurred: {type(e).__name__} - {e}"
        logger.exception("Unhandled exception in debugger session: %s", error_message)
        await websocket.send_json({"status": "error", "message": error_message})
    finally:
        for task in list(pending):
            task.cancel()
        if websocket.client_state.name != 'DISCONNECTED':
            await websocket.close()
        logger.info("WebSocket connection closed for client %s", websocket.client)


# --- Main Execution ---
if __name__ == "__main__":
    uvicorn.run(api, host=HOST, port=PORT)
