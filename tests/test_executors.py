"""Tests for node executors, the executor registry and the HTTP client."""

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from flowrunner.core.exceptions import ExecutionCancelledError, ExecutorRegistryError, NodeExecutionError
from flowrunner.core.executors import (
    ApiExecutor,
    DecisionExecutor,
    ExecutionContext,
    ExecutorRegistry,
    NodeExecutor,
    NodeOutcome,
    TaskExecutor,
)
from flowrunner.core.http_client import HttpResponse, RequestsHttpClient
from flowrunner.core.journal import CancellationToken, ExecutionJournal
from flowrunner.models.core import LogStatus, NodeKind

from .factories import FakeHttpClient, FixedConditionEvaluator, api, decision, json_response, task

URL = "https://api.example.com/items"


@pytest.fixture
def journal():
    return ExecutionJournal()


@pytest.fixture
def context():
    return ExecutionContext("run-1")


def _messages(journal):
    return [(entry.node_id, entry.status, entry.message) for entry in journal.entries]


class TestTaskExecutor:
    """Test cases for TaskExecutor."""

    def test_task_always_succeeds(self, journal, context):
        outcome = TaskExecutor().execute(task("1", "Prepare"), journal, context)

        assert outcome.node_id == "1"
        assert _messages(journal) == [("1", LogStatus.SUCCESS, 'Task "Prepare" executed successfully')]


class TestApiExecutor:
    """Test cases for ApiExecutor."""

    def test_successful_call_counts_list_items(self, journal, context):
        client = FakeHttpClient({URL: json_response([1, 2, 3])})

        ApiExecutor(client).execute(api("a", URL), journal, context)

        assert client.calls == [URL]
        assert _messages(journal) == [
            ("a", LogStatus.PENDING, f"Making API call to {URL}"),
            ("a", LogStatus.SUCCESS, "API call successful. Received 3 items."),
        ]

    @pytest.mark.parametrize("payload,count", [({"a": 1, "b": 2}, 2), ("scalar", 1), ([], 0)])
    def test_item_count_by_payload_shape(self, journal, context, payload, count):
        client = FakeHttpClient({URL: json_response(payload)})

        ApiExecutor(client).execute(api("a", URL), journal, context)

        assert journal.entries[-1].message == f"API call successful. Received {count} items."

    def test_non_2xx_status_fails(self, journal, context):
        client = FakeHttpClient({URL: json_response({"error": "nope"}, status_code=503)})

        with pytest.raises(NodeExecutionError) as exc_info:
            ApiExecutor(client).execute(api("a", URL), journal, context)

        assert exc_info.value.message == "API call failed: API responded with status: 503"
        assert exc_info.value.node_id == "a"
        assert exc_info.value.details["status_code"] == 503
        assert _messages(journal)[-1] == ("a", LogStatus.FAILED, "API call failed: API responded with status: 503")

    def test_unparsable_body_fails(self, journal, context):
        client = FakeHttpClient({URL: HttpResponse(200, b"<html>not json</html>")})

        with pytest.raises(NodeExecutionError, match="unparsable body"):
            ApiExecutor(client).execute(api("a", URL), journal, context)

    def test_transport_error_fails(self, journal, context):
        client = FakeHttpClient({URL: requests.ConnectionError("connection refused")})

        with pytest.raises(NodeExecutionError, match="API call failed: connection refused"):
            ApiExecutor(client).execute(api("a", URL), journal, context)

    def test_timeout_fails_with_configured_seconds(self, journal, context):
        client = FakeHttpClient({URL: requests.Timeout("slow")})

        with pytest.raises(NodeExecutionError) as exc_info:
            ApiExecutor(client, timeout=1.5).execute(api("a", URL), journal, context)

        assert exc_info.value.message == "API call failed: request timed out after 1.5 seconds"

    def test_cancellation_propagates(self, journal, context):
        client = FakeHttpClient({URL: ExecutionCancelledError("Execution cancelled: stop")})

        with pytest.raises(ExecutionCancelledError):
            ApiExecutor(client).execute(api("a", URL), journal, context)


class TestDecisionExecutor:
    """Test cases for DecisionExecutor."""

    @pytest.mark.parametrize("result", [True, False])
    def test_logs_condition_and_result(self, journal, context, result):
        evaluator = FixedConditionEvaluator(result)

        outcome = DecisionExecutor(evaluator).execute(decision("d", "amount > 100"), journal, context)

        assert outcome.branch is result
        assert evaluator.calls == ["amount > 100"]
        assert _messages(journal) == [
            ("d", LogStatus.PENDING, "Evaluating condition: amount > 100"),
            ("d", LogStatus.SUCCESS, f"Condition evaluated to {str(result).lower()}"),
        ]

    def test_decision_sees_earlier_outcomes(self, journal, context):
        context.record(NodeOutcome(node_id="1", detail="done"))

        class Capturing(FixedConditionEvaluator):
            def evaluate(self, condition, variables):
                self.seen = variables
                return True

        evaluator = Capturing()
        DecisionExecutor(evaluator).execute(decision("d"), journal, context)

        assert evaluator.seen["outcomes"] == {"1": "done"}


class TestExecutorRegistry:
    """Test cases for ExecutorRegistry."""

    def test_default_registry_covers_every_kind(self):
        registry = ExecutorRegistry.default(http_client=FakeHttpClient())

        assert set(registry.list_kinds()) == {"task", "api", "decision"}
        assert isinstance(registry.get(NodeKind.API), ApiExecutor)
        assert isinstance(registry.get("task"), TaskExecutor)

    def test_register_duplicate_requires_replace(self):
        registry = ExecutorRegistry()
        registry.register(NodeKind.TASK, TaskExecutor())

        with pytest.raises(ExecutorRegistryError, match="already registered"):
            registry.register(NodeKind.TASK, TaskExecutor())

        replacement = TaskExecutor()
        registry.register(NodeKind.TASK, replacement, replace=True)
        assert registry.get(NodeKind.TASK) is replacement

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ExecutorRegistryError, match="Unknown node kind"):
            ExecutorRegistry().register("email", TaskExecutor())

    def test_executor_without_execute_is_rejected(self):
        with pytest.raises(ExecutorRegistryError, match="execute"):
            ExecutorRegistry().register(NodeKind.TASK, object())

    def test_missing_executor(self):
        registry = ExecutorRegistry()

        with pytest.raises(ExecutorRegistryError, match="No executor registered for 'decision' nodes"):
            registry.get(NodeKind.DECISION)

    def test_unregister(self):
        registry = ExecutorRegistry()
        registry.register(NodeKind.TASK, TaskExecutor())

        assert registry.unregister(NodeKind.TASK)
        assert not registry.exists(NodeKind.TASK)
        assert not registry.unregister(NodeKind.TASK)

    def test_custom_executor(self, journal, context):
        class Shouting(NodeExecutor):
            description = "Upper-cases the label"

            def execute(self, node, journal, context):
                journal.append(node.id, LogStatus.SUCCESS, node.label.upper())
                return NodeOutcome(node_id=node.id)

        registry = ExecutorRegistry()
        registry.register(NodeKind.TASK, Shouting())

        registry.get(NodeKind.TASK).execute(task("1", "hello"), journal, context)

        assert journal.entries[0].message == "HELLO"
        assert registry.list_kinds() == {"task": "Upper-cases the label"}


class _LocalHandler(BaseHTTPRequestHandler):
    """Serves a JSON list on /users and a body trickled one byte at a time on /drip."""

    def do_GET(self):
        self.server.paths.append(self.path)
        if self.path == "/users":
            body = b'[{"id": 1}, {"id": 2}]'
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        elif self.path == "/drip":
            self.send_response(200)
            self.send_header("Content-Length", "1000")
            self.end_headers()
            try:
                for _ in range(1000):
                    self.wfile.write(b" ")
                    self.wfile.flush()
                    time.sleep(0.05)
            except (BrokenPipeError, ConnectionResetError):
                self.server.disconnected.set()
        else:
            self.send_error(404)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def local_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _LocalHandler)
    server.paths = []
    server.disconnected = threading.Event()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def _url(server, path):
    return f"http://127.0.0.1:{server.server_address[1]}{path}"


class TestRequestsHttpClient:
    """Test cases for RequestsHttpClient against a local server."""

    @pytest.fixture(autouse=True)
    def direct_connections(self, monkeypatch):
        for name in ("NO_PROXY", "no_proxy"):
            monkeypatch.setenv(name, "127.0.0.1,localhost")

    @pytest.fixture
    def single_worker(self):
        client = RequestsHttpClient(default_timeout=0.5, poll_interval=0.01, max_workers=1)
        yield client
        client.close()

    def test_plain_get(self, local_server):
        client = RequestsHttpClient(default_timeout=4.0)

        response = client.get(_url(local_server, "/users"))
        client.close()

        assert response == HttpResponse(200, b'[{"id": 1}, {"id": 2}]')
        assert local_server.paths == ["/users"]

    def test_error_status_is_returned(self, local_server, single_worker):
        response = single_worker.get(_url(local_server, "/missing"), cancel_token=CancellationToken())

        assert response.status_code == 404

    def test_refused_connection_raises(self, single_worker):
        with pytest.raises(requests.ConnectionError):
            single_worker.get("http://127.0.0.1:1/refused")

    def test_deadline_releases_connection_and_worker(self, local_server, single_worker):
        with pytest.raises(requests.Timeout):
            single_worker.get(_url(local_server, "/drip"))

        assert local_server.disconnected.wait(5)
        response = single_worker.get(_url(local_server, "/users"))
        assert response.status_code == 200

    def test_cancel_releases_connection_and_worker(self, local_server, single_worker):
        token = CancellationToken()
        threading.Timer(0.2, token.cancel, args=("stop",)).start()

        with pytest.raises(ExecutionCancelledError):
            single_worker.get(_url(local_server, "/drip"), timeout=5.0, cancel_token=token)

        assert local_server.disconnected.wait(5)
        response = single_worker.get(_url(local_server, "/users"), cancel_token=CancellationToken())
        assert response.status_code == 200

    def test_already_cancelled_token_skips_request(self, local_server, single_worker):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ExecutionCancelledError):
            single_worker.get(_url(local_server, "/users"), cancel_token=token)

        assert local_server.paths == []
