"""Tests for the rctl command line tool."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests
from click.testing import CliRunner

from cli import ReconcilerCLI, cli, parse_sse


def _response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        error = requests.exceptions.HTTPError(f"{status_code} Error")
        error.response = response
        response.raise_for_status.side_effect = error
    return response


@pytest.fixture
def runner():
    return CliRunner()


class TestParseSSE:
    """Tests for SSE message parsing."""

    def test_single_messages(self):
        lines = ["event: log", "data: ℹ️ one", "", "event: log", "data: ✅ two", ""]
        assert list(parse_sse(lines)) == ["ℹ️ one", "✅ two"]

    def test_multiline_data(self):
        lines = ["event: log", "data: first", "data: second", ""]
        assert list(parse_sse(lines)) == ["first\nsecond"]

    def test_trailing_message_without_blank_line(self):
        assert list(parse_sse(["data: last"])) == ["last"]

    def test_comments_ignored(self):
        assert list(parse_sse([": keep-alive", ""])) == []


class TestReconcilerCLI:
    def test_make_request_success(self):
        with patch("cli.requests.request", return_value=_response({"code": "x"})) as req:
            result = ReconcilerCLI("http://api:3000/")._make_request("GET", "/api/code")
        assert result == {"code": "x"}
        req.assert_called_once_with("GET", "http://api:3000/api/code")

    def test_make_request_error_returns_none(self):
        with patch(
            "cli.requests.request",
            return_value=_response({"error": "Code is required"}, status_code=400),
        ):
            assert ReconcilerCLI()._make_request("POST", "/api/code") is None


class TestCodeCommands:
    """Tests for `rctl code get/set`."""

    def test_code_get(self, runner):
        with patch("cli.requests.request", return_value=_response({"code": "x = 1\n"})):
            result = runner.invoke(cli, ["code", "get"])
        assert result.exit_code == 0
        assert result.output == "x = 1\n"

    def test_code_get_to_file(self, runner, tmp_path):
        target = tmp_path / "out.py"
        with patch("cli.requests.request", return_value=_response({"code": "x = 1\n"})):
            result = runner.invoke(cli, ["code", "get", "-o", str(target)])
        assert result.exit_code == 0
        assert target.read_text() == "x = 1\n"

    def test_code_set(self, runner, tmp_path):
        source = tmp_path / "reconciler.py"
        source.write_text("def reconcile(resource, ctx):\n    pass\n")
        with patch(
            "cli.requests.request", return_value=_response({"success": True})
        ) as req:
            result = runner.invoke(
                cli, ["--api-url", "http://api:3000", "code", "set", str(source)]
            )
        assert result.exit_code == 0
        assert "Code updated successfully" in result.output
        args, kwargs = req.call_args
        assert args == ("POST", "http://api:3000/api/code")
        assert kwargs["json"] == {"code": "def reconcile(resource, ctx):\n    pass\n"}

    def test_code_set_failure(self, runner, tmp_path):
        source = tmp_path / "reconciler.py"
        source.write_text("x")
        with patch(
            "cli.requests.request",
            return_value=_response({"error": "Failed to save code"}, status_code=500),
        ):
            result = runner.invoke(cli, ["code", "set", str(source)])
        assert result.exit_code == 1

    def test_api_url_from_env(self, runner):
        with patch("cli.requests.request", return_value=_response({"code": ""})) as req:
            runner.invoke(cli, ["code", "get"], env={"RCTL_API_URL": "http://other:9"})
        assert req.call_args[0][1] == "http://other:9/api/code"


class TestEmitCommand:
    """Tests for `rctl emit`."""

    def test_emit_bare_resource_yaml(self, runner, tmp_path):
        manifest = tmp_path / "resource.yaml"
        manifest.write_text(
            "apiVersion: example.com/v1\n"
            "kind: MyResource\n"
            "metadata:\n"
            "  name: example-resource\n"
            "spec:\n"
            "  replicas: 3\n"
        )
        with patch(
            "cli.requests.request",
            return_value=_response({"queued": True, "position": 1}),
        ) as req:
            result = runner.invoke(cli, ["emit", str(manifest), "--type", "modified"])
        assert result.exit_code == 0
        body = req.call_args[1]["json"]
        assert body["type"] == "MODIFIED"
        assert body["object"]["spec"] == {"replicas": 3}
        assert "MODIFIED event for example-resource queued" in result.output

    def test_emit_watch_event_json(self, runner, tmp_path):
        event = {"type": "DELETED", "object": {"metadata": {"name": "gone"}}}
        manifest = tmp_path / "event.json"
        manifest.write_text(json.dumps(event))
        with patch(
            "cli.requests.request",
            return_value=_response({"queued": True, "position": 2}),
        ) as req:
            result = runner.invoke(cli, ["emit", str(manifest)])
        assert result.exit_code == 0
        assert req.call_args[1]["json"] == event

    def test_emit_rejects_non_mapping(self, runner, tmp_path):
        manifest = tmp_path / "list.yaml"
        manifest.write_text("- a\n- b\n")
        result = runner.invoke(cli, ["emit", str(manifest)])
        assert result.exit_code == 1


class TestStatusAndLogs:
    """Tests for `rctl status` and `rctl logs`."""

    def test_status(self, runner):
        payload = {
            "state": "idle",
            "queue_depth": 0,
            "processed": 3,
            "failed": 1,
            "last_outcome": {
                "status": "fault",
                "resource": "default/example-resource",
                "event_type": "ADDED",
                "message": "RuntimeError: kaboom",
            },
        }
        with patch("cli.requests.request", return_value=_response(payload)):
            result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "idle" in result.output
        assert "default/example-resource" in result.output
        assert "RuntimeError: kaboom" in result.output

    def test_logs(self, runner):
        with patch.object(
            ReconcilerCLI, "stream_logs", return_value=iter(["ℹ️ Event ADDED", "✅ done"])
        ):
            result = runner.invoke(cli, ["logs"])
        assert result.exit_code == 0
        assert result.output == "ℹ️ Event ADDED\n✅ done\n"

    def test_logs_connection_error(self, runner):
        with patch.object(
            ReconcilerCLI,
            "stream_logs",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ):
            result = runner.invoke(cli, ["logs"])
        assert result.exit_code == 1
