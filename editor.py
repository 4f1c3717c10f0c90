"""
Boundary between the session controller and whatever renders the graph.

The controller only produces scenarios and status updates; an EditorAdapter turns them
into pixels, JSON events or anything else.
"""
from typing import Dict, Any, List

from pydantic import BaseModel

from state import Scenario


class CaptureResult(BaseModel):
    """Generated test source and the file name it should be saved under."""
    code: str
    filename: str


def marshall_scenario_for_editor(scenario: Scenario) -> Dict[str, Dict[str, Any]]:
    """
    Converts a scenario into the editor's schema.

    The editor supports several attributes per node while the debugger server sends a
    single vertexValue, so each record gains a `vertexValues` list holding that value (or
    nothing when the value is absent).
    """
    marshalled: Dict[str, Dict[str, Any]] = {}
    for vertex_id, record in scenario.items():
        data = record.to_wire()
        value = record.vertex_value
        data["vertexValues"] = [value] if value is not None else []
        marshalled[vertex_id] = data
    return marshalled


def traced_vertex_ids(scenario: Scenario) -> List[str]:
    """Vertices shown as enabled: everything not explicitly carried over from an earlier superstep."""
    return [vertex_id for vertex_id, record in scenario.items() if record.debugged is not False]


class EditorAdapter:
    """
    Interface of the graph editor as seen by the SessionController.

    Every hook is a coroutine so that adapters can push to a socket; the defaults do nothing.
    """

    async def set_mode(self, mode: str) -> None:
        pass

    async def set_readonly(self, readonly: bool) -> None:
        pass

    async def show_superstep(self, superstep: int, can_step_backward: bool, can_step_forward: bool,
                             max_superstep: int) -> None:
        pass

    async def show_preloader(self) -> None:
        pass

    async def hide_preloader(self) -> None:
        pass

    async def build_graph(self, superstep: int, scenario: Dict[str, Dict[str, Any]], traced: List[str]) -> None:
        """Replaces the editor's graph with the given scenario."""

    async def update_graph(self, superstep: int, scenario: Dict[str, Dict[str, Any]], traced: List[str]) -> None:
        """Adds new vertices and refreshes the data of existing ones; untraced vertices are disabled."""

    async def notify(self, message: str, level: str = "info", timeout_ms: int | None = None) -> None:
        pass
