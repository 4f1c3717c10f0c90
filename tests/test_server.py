import unittest
from unittest.mock import MagicMock, patch
import sys
import os

from fastapi.testclient import TestClient

# Add project root to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import server
from debugger_client import DebuggerServerError
from state import parse_scenario


def _fake_client():
    client = MagicMock()
    client.fetch_scenario.side_effect = lambda job_id, superstep: parse_scenario({"1": {"vertexValue": superstep}})
    client.fetch_supersteps.side_effect = DebuggerServerError(503, "Service Unavailable")
    client.fetch_master_test.side_effect = DebuggerServerError(500, "Master trace missing")
    client.fetch_test_graph.return_value = "graph code"
    return client


def _receive_until(ws, status):
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event.get("status") == status:
            return events


class TestServer(unittest.TestCase):

    def setUp(self):
        self.client = TestClient(server.api)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_start_session_renders_first_superstep(self):
        with patch("server.DebuggerClient", return_value=_fake_client()):
            with self.client.websocket_connect("/ws/debugger") as ws:
                self.assertEqual(ws.receive_json(), {"status": "mode", "mode": "edit"})
                ws.send_json({"command": "start", "job_id": "job_1"})
                events = _receive_until(ws, "render")

        statuses = [event["status"] for event in events]
        self.assertIn("readonly", statuses)
        self.assertIn("superstep", statuses)
        render = events[-1]
        self.assertEqual(render["mode"], "build")
        self.assertEqual(render["superstep"], 0)
        self.assertEqual(render["scenario"]["1"]["vertexValues"], [0])
        self.assertEqual(render["traced"], ["1"])

    def test_step_in_edit_mode_is_rejected(self):
        with patch("server.DebuggerClient", return_value=_fake_client()):
            with self.client.websocket_connect("/ws/debugger") as ws:
                ws.receive_json()
                ws.send_json({"command": "next"})
                event = ws.receive_json()
        self.assertEqual(event["status"], "error")
        self.assertIn("outside of a debug session", event["message"])

    def test_invalid_command(self):
        with patch("server.DebuggerClient", return_value=_fake_client()):
            with self.client.websocket_connect("/ws/debugger") as ws:
                ws.receive_json()
                ws.send_json({"command": "teleport"})
                event = ws.receive_json()
        self.assertEqual(event["status"], "error")
        self.assertIn("Invalid command", event["message"])

    def test_malformed_frame_keeps_connection_open(self):
        with patch("server.DebuggerClient", return_value=_fake_client()):
            with self.client.websocket_connect("/ws/debugger") as ws:
                ws.receive_json()
                ws.send_text("not json")
                malformed = ws.receive_json()
                ws.send_text("[1, 2]")
                not_an_object = ws.receive_json()
                ws.send_json({"command": "next"})
                followup = ws.receive_json()
        self.assertEqual(malformed["status"], "error")
        self.assertIn("Invalid command", malformed["message"])
        self.assertEqual(not_an_object["status"], "error")
        self.assertIn("Invalid command", not_an_object["message"])
        self.assertEqual(followup["status"], "error")
        self.assertIn("outside of a debug session", followup["message"])

    def test_unexpected_command_failure_is_reported(self):
        fake = _fake_client()
        fake.fetch_test_graph.side_effect = RuntimeError("disk full")
        with patch("server.DebuggerClient", return_value=fake):
            with self.client.websocket_connect("/ws/debugger") as ws:
                ws.receive_json()
                ws.send_json({"command": "generate_test_graph", "adj_list": "1 2"})
                event = _receive_until(ws, "error")[-1]
                ws.send_json({"command": "generate_test_graph", "adj_list": "1 2"})
                again = _receive_until(ws, "error")[-1]
        self.assertIn("RuntimeError", event["message"])
        self.assertIn("disk full", event["message"])
        self.assertEqual(again["message"], event["message"])

    def test_capture_failure_is_forwarded_verbatim(self):
        with patch("server.DebuggerClient", return_value=_fake_client()):
            with self.client.websocket_connect("/ws/debugger") as ws:
                ws.receive_json()
                ws.send_json({"command": "start", "job_id": "job_1"})
                _receive_until(ws, "render")
                ws.send_json({"command": "capture_master"})
                event = _receive_until(ws, "capture_failed")[-1]
        self.assertEqual(event["message"], "Master trace missing")

    def test_generate_test_graph(self):
        with patch("server.DebuggerClient", return_value=_fake_client()):
            with self.client.websocket_connect("/ws/debugger") as ws:
                ws.receive_json()
                ws.send_json({"command": "generate_test_graph", "adj_list": "1 2", "name": "Line_2"})
                event = _receive_until(ws, "capture")[-1]
        self.assertEqual(event["code"], "graph code")
        self.assertEqual(event["filename"], "Line_2.java")


if __name__ == '__main__':
    unittest.main()
