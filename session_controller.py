"""
Drives one interactive debugging session: switches between edit and debug mode, walks
the supersteps of a job and rebuilds each superstep's full graph state from the sparse
per-superstep traces the debugger server returns.
"""
import asyncio
import logging
from functools import partial
from typing import Any, Callable

from debugger_client import (
    DEFAULT_MAX_SUPERSTEP,
    RETRY_DELAY_MS,
    RETRY_TIMES,
    DebuggerClient,
    RetriesExhaustedError,
    fetch_with_retry,
)
from editor import CaptureResult, EditorAdapter, marshall_scenario_for_editor, traced_vertex_ids
from state import (
    FIRST_SUPERSTEP,
    DebuggerMode,
    Scenario,
    Session,
    StateCache,
    merge_scenarios,
)

logger = logging.getLogger("graft.controller")

FETCH_RETRY_MESSAGE = "Failed to fetch job. Retrying {remaining} more times..."
FETCH_FAILED_MESSAGE = "Failed to fetch job. Please check your network and debugger server."


class SessionStateError(Exception):
    """A command was issued in a mode that does not accept it."""


class SessionController:
    """
    Owns the Session and StateCache of one debugger instance.

    Scenarios are fetched one superstep at a time. The first superstep fetched after a reset
    is installed as a complete scenario; every later one is merged onto the cached scenario
    of the superstep before it. Fetches may overlap when the user steps quickly, so a result
    is only committed if its job and superstep are still the current ones once it arrives.
    """

    def __init__(
        self,
        client: DebuggerClient,
        editor: EditorAdapter | None = None,
        *,
        max_attempts: int = RETRY_TIMES,
        retry_delay_ms: int = RETRY_DELAY_MS,
        default_max_superstep: int = DEFAULT_MAX_SUPERSTEP,
    ):
        self.client = client
        self.editor = editor or EditorAdapter()
        self.max_attempts = max_attempts
        self.retry_delay_ms = retry_delay_ms
        self.default_max_superstep = default_max_superstep
        self.mode = DebuggerMode.EDIT
        self.session = Session(max_superstep=default_max_superstep)
        self.state_cache = StateCache()
        # Bumped on every reset so responses issued before it can be told apart.
        self._epoch = 0
        self.refresh_task: asyncio.Task | None = None

    # --- Mode State Machine ---

    async def start_debug_session(self, job_id: str) -> Scenario | None:
        """Edit -> Debug: attaches `job_id` and shows its first superstep."""
        if self.mode is DebuggerMode.DEBUG:
            raise SessionStateError("A debug session is already running. Exit it before fetching another job.")
        if not job_id:
            raise SessionStateError("A job id is required to start debugging.")

        logger.info("Starting debug session for job %s", job_id)
        self.session.job_id = job_id
        self.session.current_superstep = FIRST_SUPERSTEP
        self.mode = DebuggerMode.DEBUG
        epoch = self._epoch
        await self.editor.set_mode(self.mode.value)
        await self.editor.set_readonly(True)
        if epoch != self._epoch:
            logger.info("Debug session for job %s was exited before its first superstep was requested.", job_id)
            return None
        return await self.change_superstep(job_id, FIRST_SUPERSTEP)

    async def exit_debug_session(self) -> None:
        """Debug -> Edit: makes the editor writable and drops every trace of the session."""
        logger.info("Exiting debug session for job %s", self.session.job_id)
        # All state changes happen before the first await; a start may run during the editor calls.
        self.mode = DebuggerMode.EDIT
        self._reset()
        await self.editor.set_readonly(False)
        if self.mode is DebuggerMode.EDIT:
            await self.editor.set_mode(self.mode.value)

    def _reset(self) -> None:
        self.session = Session(max_superstep=self.default_max_superstep)
        self.state_cache.reset()
        self._epoch += 1
        if self.refresh_task is not None and not self.refresh_task.done():
            self.refresh_task.cancel()
        self.refresh_task = None

    def _require_debug_mode(self, action: str) -> None:
        if self.mode is not DebuggerMode.DEBUG:
            raise SessionStateError(f"Cannot {action} outside of a debug session.")

    # --- Stepping ---

    @property
    def can_step_backward(self) -> bool:
        return self.session.current_superstep > self.session.min_superstep

    @property
    def can_step_forward(self) -> bool:
        current = self.session.current_superstep
        return current < self.session.max_superstep and self.state_cache.has(current)

    async def step_forward(self) -> Scenario | None:
        self._require_debug_mode("step forward")
        if not self.can_step_forward:
            logger.info("Refusing to step past superstep %s (max %s, cached: %s).",
                        self.session.current_superstep, self.session.max_superstep,
                        self.state_cache.has(self.session.current_superstep))
            return None
        self.session.current_superstep += 1
        return await self.change_superstep(self.session.job_id, self.session.current_superstep)

    async def step_backward(self) -> Scenario | None:
        self._require_debug_mode("step backward")
        if not self.can_step_backward:
            logger.info("Refusing to step before superstep %s.", self.session.min_superstep)
            return None
        self.session.current_superstep -= 1
        return await self.change_superstep(self.session.job_id, self.session.current_superstep)

    async def reload_superstep(self) -> Scenario | None:
        """Shows the current superstep again, fetching it if an earlier attempt gave up."""
        self._require_debug_mode("reload")
        return await self.change_superstep(self.session.job_id, self.session.current_superstep)

    async def change_superstep(self, job_id: str, superstep: int) -> Scenario | None:
        """
        Shows `superstep` of `job_id`, from the cache when possible.

        Returns the scenario that was rendered, or None when the fetch gave up or its
        result arrived after the user had moved on.
        """
        logger.info("Changing superstep to %s (job %s)", superstep, job_id)
        await self._show_superstep()
        self._schedule_max_superstep_refresh(job_id)

        cached = self.state_cache.get(superstep)
        if cached is not None:
            await self._render(superstep, cached, rebuild=False)
            return cached
        return await self._fetch_superstep(job_id, superstep)

    async def _fetch_superstep(self, job_id: str, superstep: int) -> Scenario | None:
        bootstrap = self.state_cache.is_bootstrap_state()
        if not bootstrap and not self.state_cache.has(superstep - 1):
            logger.error("Cannot build superstep %s: superstep %s is not loaded.", superstep, superstep - 1)
            await self.editor.notify(f"Superstep {superstep - 1} must be loaded before superstep {superstep}.", "error")
            return None

        epoch = self._epoch
        await self.editor.show_preloader()
        try:
            delta = await fetch_with_retry(
                partial(self._run_blocking, self.client.fetch_scenario, job_id, superstep),
                max_attempts=self.max_attempts,
                delay_ms=self.retry_delay_ms,
                on_retry=self._notify_retry,
                operation_name=f"Scenario fetch (job {job_id}, superstep {superstep})",
            )
        except RetriesExhaustedError:
            if self._is_current(job_id, superstep, epoch):
                await self.editor.notify(FETCH_FAILED_MESSAGE, "error")
            return None
        finally:
            await self.editor.hide_preloader()

        if not self._is_current(job_id, superstep, epoch):
            logger.info("Discarding stale scenario for job %s superstep %s.", job_id, superstep)
            return None

        if bootstrap:
            scenario = delta
        else:
            scenario = merge_scenarios(self.state_cache.get(superstep - 1), delta)
        stored = self.state_cache.put(superstep, scenario)
        logger.info("Cached superstep %s with %s vertices (%s traced).", superstep, len(stored), len(delta))
        await self._render(superstep, stored, rebuild=bootstrap)
        return stored

    def _is_current(self, job_id: str, superstep: int, epoch: int) -> bool:
        return (
            epoch == self._epoch
            and self.mode is DebuggerMode.DEBUG
            and self.session.job_id == job_id
            and self.session.current_superstep == superstep
        )

    async def _notify_retry(self, remaining: int) -> None:
        await self.editor.notify(FETCH_RETRY_MESSAGE.format(remaining=remaining), "warning", timeout_ms=1000)

    async def _render(self, superstep: int, scenario: Scenario, rebuild: bool) -> None:
        marshalled = marshall_scenario_for_editor(scenario)
        traced = traced_vertex_ids(scenario)
        if rebuild:
            await self.editor.build_graph(superstep, marshalled, traced)
        else:
            await self.editor.update_graph(superstep, marshalled, traced)

    async def _show_superstep(self) -> None:
        await self.editor.show_superstep(
            self.session.current_superstep,
            self.can_step_backward,
            self.can_step_forward,
            self.session.max_superstep,
        )

    # --- Max Superstep Refresh ---

    def _schedule_max_superstep_refresh(self, job_id: str) -> None:
        if self.refresh_task is not None and not self.refresh_task.done():
            return
        self.refresh_task = asyncio.create_task(self._refresh_max_superstep(job_id, self._epoch))

    async def _refresh_max_superstep(self, job_id: str, epoch: int) -> None:
        """Best effort: a failure leaves the previous bound in place."""
        try:
            supersteps = await self._run_blocking(self.client.fetch_supersteps, job_id)
            latest = max(supersteps)
        except Exception as e:
            logger.debug("Could not refresh max superstep for job %s: %s", job_id, e)
            return
        if epoch != self._epoch or self.session.job_id != job_id:
            return
        if latest != self.session.max_superstep:
            logger.info("Job %s has supersteps up to %s.", job_id, latest)
            self.session.max_superstep = latest
            await self._show_superstep()

    # --- Test Capture ---

    async def capture_vertex_scenario(self, vertex_id: str, trace_type: str = "reg") -> CaptureResult:
        """Generates a test for one vertex at the current superstep. Not retried."""
        self._require_debug_mode("capture a vertex")
        job_id, superstep = self.session.job_id, self.session.current_superstep
        code = await self._run_blocking(self.client.fetch_vertex_test, job_id, superstep, vertex_id, trace_type)
        return CaptureResult(code=code, filename=f"{job_id}_{superstep}_{vertex_id}.java")

    async def capture_master_scenario(self) -> CaptureResult:
        """Generates a test for the master computation at the current superstep. Not retried."""
        self._require_debug_mode("capture the master")
        job_id, superstep = self.session.job_id, self.session.current_superstep
        code = await self._run_blocking(self.client.fetch_master_test, job_id, superstep)
        return CaptureResult(code=code, filename=f"{job_id}_{superstep}.java")

    async def generate_test_graph(self, adj_list: str, name: str) -> CaptureResult:
        """Generates a test input graph from an adjacency list. Allowed in both modes."""
        code = await self._run_blocking(self.client.fetch_test_graph, adj_list)
        return CaptureResult(code=code, filename=f"{name}.java")

    @staticmethod
    async def _run_blocking(func: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))
