"""
HTTP client for the Giraph debugger server and the retry policy used for scenario fetches.

The server exposes the traced state of a job superstep by superstep, the list of
supersteps it has traces for, and test-code generators for captured vertices, the
master computation and hand-built graphs.
"""
import os
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, TypeVar

import requests
from dotenv import load_dotenv

from state import Scenario, parse_scenario

# --- Server and Retry Configuration ---
load_dotenv()
DEBUGGER_SERVER_ROOT = os.getenv("GRAFT_DEBUGGER_SERVER_ROOT", "http://localhost:8000").strip().rstrip("/")
RETRY_TIMES = int(os.getenv("GRAFT_RETRY_TIMES", "5"))
RETRY_DELAY_MS = int(os.getenv("GRAFT_RETRY_DELAY_MS", "2000"))
REQUEST_TIMEOUT = float(os.getenv("GRAFT_HTTP_TIMEOUT", "10"))
DEFAULT_MAX_SUPERSTEP = int(os.getenv("GRAFT_DEFAULT_MAX_SUPERSTEP", "15"))
HTTP_HEADERS = {
    "User-Agent": os.getenv("GRAFT_HTTP_USER_AGENT", "GraftDebugger/1.0"),
}

logger = logging.getLogger("graft.client")

T = TypeVar("T")


class DebuggerServerError(Exception):
    """A request to the debugger server failed; `message` is the server's response text when it sent one."""

    def __init__(self, status_code: int | None, message: str, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.url = url

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


class RetriesExhaustedError(Exception):
    """Every attempt of a retried operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None):
        super().__init__(f"{operation} failed after {attempts} attempts. Last error: {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class DebuggerClient:
    """Thin blocking wrapper over the debugger server endpoints."""

    def __init__(self, server_root: str = DEBUGGER_SERVER_ROOT, timeout: float = REQUEST_TIMEOUT,
                 http: requests.Session | None = None):
        self.server_root = server_root.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.headers.update(HTTP_HEADERS)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.server_root}{path}"
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise DebuggerServerError(None, f"Could not reach debugger server: {e}", url) from e
        if not response.ok:
            raise DebuggerServerError(response.status_code, response.text, url)
        return response

    def fetch_scenario(self, job_id: str, superstep: int) -> Scenario:
        """Fetches the vertices traced in one superstep."""
        logger.debug("Fetching scenario for job %s superstep %s", job_id, superstep)
        response = self._request("GET", "/scenario", params={"jobId": job_id, "superstepId": superstep})
        return parse_scenario(response.json())

    def fetch_supersteps(self, job_id: str) -> List[int]:
        """Lists the supersteps the server holds traces for."""
        response = self._request("GET", "/supersteps", params={"jobId": job_id})
        payload = response.json()
        if not isinstance(payload, list):
            raise ValueError(f"Superstep list must be a JSON array, got {type(payload).__name__}.")
        return [int(step) for step in payload]

    def fetch_vertex_test(self, job_id: str, superstep: int, vertex_id: str, trace_type: str = "reg") -> str:
        """Generates test code reproducing one vertex's compute call."""
        params = {
            "jobId": job_id,
            "superstepId": superstep,
            "vertexId": vertex_id,
            "traceType": trace_type,
        }
        return self._request("GET", "/test/vertex", params=params).text

    def fetch_master_test(self, job_id: str, superstep: int) -> str:
        """Generates test code reproducing the master compute call of a superstep."""
        params = {"jobId": job_id, "superstepId": superstep}
        return self._request("GET", "/test/master", params=params).text

    def fetch_test_graph(self, adj_list: str) -> str:
        """Generates test code that builds the given adjacency list as an input graph."""
        return self._request("POST", "/test/graph", data={"adjList": adj_list}).text


async def _pause(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000.0)


async def fetch_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = RETRY_TIMES,
    delay_ms: int = RETRY_DELAY_MS,
    on_retry: Callable[[int], Any] | None = None,
    operation_name: str = "Fetch",
) -> T:
    """
    Awaits `operation()` up to `max_attempts` times with a fixed `delay_ms` between attempts.

    After each failed attempt that will be retried, `on_retry` is called (and awaited if it
    returns an awaitable) with the number of attempts still remaining. Raises
    RetriesExhaustedError once every attempt has failed.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1.")

    last_exception: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except (DebuggerServerError, ValueError) as e:
            last_exception = e
            remaining = max_attempts - attempt
            if not remaining:
                break
            logger.warning("%s failed on attempt %s/%s: %s. Retrying in %sms...",
                           operation_name, attempt, max_attempts, e, delay_ms)
            await _pause(delay_ms)
            if on_retry is not None:
                notified = on_retry(remaining)
                if inspect.isawaitable(notified):
                    await notified

    logger.error("%s failed on all %s attempts. Last error: %s", operation_name, max_attempts, last_exception)
    raise RetriesExhaustedError(operation_name, max_attempts, last_exception)
