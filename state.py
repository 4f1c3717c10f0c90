"""
Defines the typed state for the superstep debugger: per-vertex records, reconstructed
scenarios, the per-session bookkeeping and the superstep state cache.
"""
import logging
from enum import Enum
from typing import Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("graft.state")

# Superstep sentinels
NO_SESSION_SUPERSTEP = -2  # Edit mode at rest
BASELINE_SUPERSTEP = -1    # Empty graph before the first real superstep
FIRST_SUPERSTEP = 0

# --- Pydantic Data Models ---

class VertexRecord(BaseModel):
    """
    Attributes of one graph vertex at a point in time, as sent by the debugger server.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    vertex_value: Any = Field(default=None, alias="vertexValue")
    messages_sent: Dict[str, Any] = Field(default_factory=dict, alias="messagesSent")
    messages_received: Dict[str, Any] = Field(default_factory=dict, alias="messagesReceived")
    edge_values: Dict[str, Any] = Field(default_factory=dict, alias="edgeValues")
    # None means the server did not say; True/False are set by the merge engine.
    debugged: bool | None = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# Vertex id -> record. A full reconstruction when cached, sparse when fetched as a delta.
Scenario = Dict[str, VertexRecord]


class DebuggerMode(str, Enum):
    """
    Edit mode: the editor is writable and no job is attached.
    Debug mode: the editor is read-only, walking through the supersteps of a job.
    """
    EDIT = "edit"
    DEBUG = "debug"


class Session(BaseModel):
    """Bookkeeping for the job currently being stepped through."""
    job_id: str | None = None
    current_superstep: int = NO_SESSION_SUPERSTEP
    min_superstep: int = BASELINE_SUPERSTEP
    max_superstep: int = 15


def parse_scenario(payload: Any) -> Scenario:
    """Validates a JSON object (vertex id -> record) into a Scenario."""
    if not isinstance(payload, dict):
        raise ValueError(f"Scenario payload must be a JSON object, got {type(payload).__name__}.")
    return {str(vertex_id): VertexRecord.model_validate(record or {}) for vertex_id, record in payload.items()}


def scenario_to_wire(scenario: Scenario) -> Dict[str, Dict[str, Any]]:
    return {vertex_id: record.to_wire() for vertex_id, record in scenario.items()}


# --- Merge Engine ---

def merge_scenarios(base: Scenario, delta: Scenario) -> Scenario:
    """
    Builds the full state of a superstep from the previous full state and this superstep's delta.

    Vertices only in `base` are carried over and marked as not debugged. Vertices in `delta`
    replace whatever `base` had for them (no field-level merge) and are marked as debugged.
    Neither input is modified.
    """
    merged: Scenario = {
        vertex_id: record.model_copy(update={"debugged": False}, deep=True)
        for vertex_id, record in base.items()
    }
    for vertex_id, record in delta.items():
        merged[vertex_id] = record.model_copy(update={"debugged": True}, deep=True)
    return merged


# --- State Cache ---

class StateCache:
    """
    Full reconstructed scenarios keyed by superstep index.

    Always holds the empty baseline at index -1. Entries are written once and are only
    removed all together by `reset`.
    """

    def __init__(self):
        self._scenarios: Dict[int, Scenario] = {}
        self.reset()

    def reset(self) -> None:
        self._scenarios = {BASELINE_SUPERSTEP: {}}

    def has(self, superstep: int) -> bool:
        return superstep in self._scenarios

    def get(self, superstep: int) -> Scenario | None:
        return self._scenarios.get(superstep)

    def put(self, superstep: int, scenario: Scenario) -> Scenario:
        """Stores `scenario` unless the index is already filled; returns the stored entry."""
        existing = self._scenarios.get(superstep)
        if existing is not None:
            logger.debug("Superstep %s already cached; keeping the first entry.", superstep)
            return existing
        self._scenarios[superstep] = scenario
        return scenario

    def is_bootstrap_state(self) -> bool:
        """True while only the baseline is cached, i.e. no real superstep has been fetched yet."""
        return len(self._scenarios) == 1

    def supersteps(self) -> List[int]:
        return sorted(self._scenarios)

    def __contains__(self, superstep: int) -> bool:
        return self.has(superstep)

    def __len__(self) -> int:
        return len(self._scenarios)
