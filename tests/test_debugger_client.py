import unittest
from unittest.mock import MagicMock
import sys
import os

import requests

# Add project root to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from debugger_client import DebuggerClient, DebuggerServerError


def _response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    response.json.return_value = json_data
    return response


class TestDebuggerClient(unittest.TestCase):

    def setUp(self):
        self.http = MagicMock()
        self.http.headers = {}
        self.client = DebuggerClient(server_root="http://debugger:8000/", timeout=3, http=self.http)

    def test_fetch_scenario(self):
        self.http.request.return_value = _response(json_data={"2": {"vertexValue": 7}})
        scenario = self.client.fetch_scenario("job_1", 4)
        self.http.request.assert_called_once_with(
            "GET", "http://debugger:8000/scenario",
            timeout=3, params={"jobId": "job_1", "superstepId": 4},
        )
        self.assertEqual(scenario["2"].vertex_value, 7)
        self.assertIsNone(scenario["2"].debugged)

    def test_fetch_scenario_rejects_non_object(self):
        self.http.request.return_value = _response(json_data=["not", "a", "scenario"])
        with self.assertRaises(ValueError):
            self.client.fetch_scenario("job_1", 0)

    def test_fetch_supersteps(self):
        self.http.request.return_value = _response(json_data=[0, 1, "2"])
        self.assertEqual(self.client.fetch_supersteps("job_1"), [0, 1, 2])

    def test_http_error_carries_response_text(self):
        self.http.request.return_value = _response(status_code=404, text="No trace for job_1")
        with self.assertRaises(DebuggerServerError) as cm:
            self.client.fetch_master_test("job_1", 3)
        self.assertEqual(cm.exception.status_code, 404)
        self.assertEqual(cm.exception.message, "No trace for job_1")
        self.assertEqual(cm.exception.url, "http://debugger:8000/test/master")

    def test_connection_error_is_wrapped(self):
        self.http.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(DebuggerServerError) as cm:
            self.client.fetch_scenario("job_1", 0)
        self.assertIsNone(cm.exception.status_code)
        self.assertIn("refused", str(cm.exception))

    def test_fetch_vertex_test(self):
        self.http.request.return_value = _response(text="public class Test {}")
        code = self.client.fetch_vertex_test("job_1", 2, "17")
        self.assertEqual(code, "public class Test {}")
        _, kwargs = self.http.request.call_args
        self.assertEqual(kwargs["params"], {"jobId": "job_1", "superstepId": 2, "vertexId": "17", "traceType": "reg"})

    def test_fetch_test_graph_posts_adjacency_list(self):
        self.http.request.return_value = _response(text="graph code")
        self.assertEqual(self.client.fetch_test_graph("1 2\n2 1"), "graph code")
        args, kwargs = self.http.request.call_args
        self.assertEqual(args, ("POST", "http://debugger:8000/test/graph"))
        self.assertEqual(kwargs["data"], {"adjList": "1 2\n2 1"})

    def test_sets_user_agent(self):
        self.assertIn("User-Agent", self.http.headers)


if __name__ == '__main__':
    unittest.main()
