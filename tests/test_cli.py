"""Tests for the command line interface."""

import json
import zipfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from pwtrace.cli import action_target, cli, format_duration, source_label
from pwtrace.models.config import ENV_MAX_ENTRIES, TraceConfig, TraceLimits
from pwtrace.models.trace import Action
from pwtrace.errors import TraceError
from trace_builders import (
    WALL_TIME,
    five_step_events,
    frame_snapshot,
    page_html,
    png_bytes,
    resource_snapshot,
    to_ndjson,
)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def dom_trace_path(make_trace) -> Path:
    html = page_html(
        ["FORM", {"id": "login", "class": "card"},
            ["INPUT", {"type": "email", "name": "email", "__playwright_value__": "x"}],
            ["BUTTON", {"id": "submit", "class": "btn primary"}, "Sign in"],
            ["A", {"href": "/forgot"}, "Forgot?"],
         ],
        ["P", {}, "\x1b[31mWelcome\x1b[0m"],
    )
    events = five_step_events() + [
        frame_snapshot("before@call@2", 160, html, url="https://example.com/login"),
        frame_snapshot("after@call@2", 400, ["HTML", {}]),
    ]
    return make_trace(events)


def _json(result) -> object:
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestHelpers:
    """Tests for CLI formatting helpers."""

    @pytest.mark.parametrize("ms,expected", [(0, "0ms"), (999.4, "999ms"), (1500, "1.5s"), (60000, "60.0s")])
    def test_format_duration(self, ms, expected):
        assert format_duration(ms) == expected

    def test_action_target_prefers_url(self):
        action = Action(call_id="c", method="goto", start_time=0, end_time=1, duration=1,
                        params={"url": "https://example.com", "selector": "#x"})
        assert action_target(action) == "https://example.com"

    def test_action_target_sanitized(self):
        action = Action(call_id="c", method="click", start_time=0, end_time=1, duration=1,
                        params={"selector": "\x1b]0;title\x07#go"})
        assert action_target(action) == "#go"

    def test_source_label(self):
        action = Action(call_id="c", method="expect", start_time=0, end_time=1, duration=1,
                        source_location={"file": "C:\\repo\\tests\\a.spec.ts", "line": 9})
        assert source_label(action) == "a.spec.ts:9"

    def test_source_label_missing(self):
        action = Action(call_id="c", method="expect", start_time=0, end_time=1, duration=1)
        assert source_label(action) == ""


class TestShow:
    """Tests for the show command."""

    def test_json(self, runner, failing_trace_path):
        data = _json(runner.invoke(cli, ["show", str(failing_trace_path), "--format", "json"]))
        assert data["result"] == "FAILED"
        assert data["duration_ms"] == 700
        assert [a["method"] for a in data["actions"]] == ["newPage", "goto", "fill", "click", "close"]
        assert data["actions"][1]["target"] == "https://example.com/login"
        assert "Timeout 5000ms exceeded" in data["actions"][3]["error"]
        assert data["actions"][0]["error"] is None

    def test_table(self, runner, passing_trace_path):
        result = runner.invoke(cli, ["show", str(passing_trace_path)])
        assert result.exit_code == 0, result.output
        assert "PASSED" in result.output
        assert "goto" in result.output

    def test_grouped_titles(self, runner, grouped_trace_path):
        data = _json(runner.invoke(cli, ["show", str(grouped_trace_path), "--format", "json"]))
        assert data["actions"][3]["step_title"] == "Verify header text"
        assert data["actions"][3]["nesting_depth"] == 2
        assert data["actions"][3]["source"] == "login.spec.ts:20"

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["show", str(tmp_path / "nope.zip")])
        assert result.exit_code == 1
        assert "Trace file not found" in result.output


class TestLimits:
    """Tests for limit flags, environment variables and config files."""

    def test_flag(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["--max-entries", "2", "show", str(failing_trace_path)])
        assert result.exit_code == 1
        assert "Zip too large" in result.output

    def test_environment(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["show", str(failing_trace_path)], env={ENV_MAX_ENTRIES: "2"})
        assert result.exit_code == 1
        assert "Zip too large" in result.output

    def test_flag_beats_environment(self, runner, failing_trace_path):
        result = runner.invoke(
            cli, ["--max-entries", "100", "show", str(failing_trace_path)], env={ENV_MAX_ENTRIES: "2"},
        )
        assert result.exit_code == 0, result.output

    def test_entry_size_flag(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["--max-entry-size", "10", "show", str(failing_trace_path)])
        assert result.exit_code == 1
        assert "entry too large" in result.output

    def test_invalid_flag_value(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["--max-size", "0", "show", str(failing_trace_path)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_config_file(self, runner, tmp_path, failing_trace_path):
        config_file = tmp_path / "pwtrace.json"
        TraceConfig(limits=TraceLimits(max_entries=2)).save(config_file)
        result = runner.invoke(cli, ["-c", str(config_file), "show", str(failing_trace_path)])
        assert result.exit_code == 1
        assert "Zip too large" in result.output

    def test_missing_config_file(self, runner, tmp_path, failing_trace_path):
        result = runner.invoke(cli, ["-c", str(tmp_path / "none.json"), "show", str(failing_trace_path)])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestSummary:
    """Tests for the summary command."""

    def test_json(self, runner, failing_trace_path):
        data = _json(runner.invoke(cli, ["summary", str(failing_trace_path), "--format", "json"]))
        assert data["result"] == "FAILED"
        assert data["failed_step"] == 4
        assert data["actions"]["total"] == 5
        assert data["actions"]["by_method"]["click"] == 1
        assert data["console"] == {"total": 2, "errors": 1, "warnings": 0, "logs": 1}
        assert data["screenshots"] == 3
        assert data["malformed_lines"] == 0

    def test_text(self, runner, passing_trace_path):
        result = runner.invoke(cli, ["summary", str(passing_trace_path)])
        assert result.exit_code == 0, result.output
        assert "PASSED" in result.output
        assert "chromium" in result.output


class TestStep:
    """Tests for the step command."""

    def test_json(self, runner, failing_trace_path):
        data = _json(runner.invoke(cli, ["step", str(failing_trace_path), "4", "--format", "json"]))
        assert data["method"] == "click"
        assert data["status"] == "failed"
        assert data["params"]["selector"] == "button#submit"
        assert data["console_errors"] == ["Uncaught TypeError: x is not a function"]
        assert data["screenshot"].endswith(".png")

    def test_text(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["step", str(failing_trace_path), "2"])
        assert result.exit_code == 0, result.output
        assert "Step 2: goto" in result.output
        assert "https://example.com/login" in result.output

    def test_out_of_range(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["step", str(failing_trace_path), "9"])
        assert result.exit_code == 1
        assert "Step 9 not found" in result.output

    def test_not_positive(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["step", str(failing_trace_path), "0"])
        assert result.exit_code == 1
        assert "positive integer" in result.output


class TestConsoleCommand:
    """Tests for the console command."""

    def test_level_filter(self, runner, failing_trace_path):
        data = _json(runner.invoke(cli, ["console", str(failing_trace_path), "--level", "error", "--format", "json"]))
        assert [m["level"] for m in data] == ["error"]

    def test_step_window(self, runner, failing_trace_path):
        data = _json(runner.invoke(cli, ["console", str(failing_trace_path), "--step", "4", "--format", "json"]))
        assert [m["text"] for m in data] == ["Uncaught TypeError: x is not a function"]

    def test_no_messages(self, runner, grouped_trace_path):
        result = runner.invoke(cli, ["console", str(grouped_trace_path)])
        assert result.exit_code == 0, result.output
        assert "No console messages found" in result.output


class TestNetworkCommand:
    """Tests for the network command."""

    def test_json_redacts_headers(self, runner, failing_trace_path):
        data = _json(runner.invoke(cli, ["network", str(failing_trace_path), "--format", "json"]))
        assert len(data) == 2
        assert {"name": "Cookie", "value": "<redacted>"} in data[0]["request_headers"]
        assert "sid=123" not in json.dumps(data)

    def test_failed_shows_sanitized_body(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["network", str(failing_trace_path), "--failed"])
        assert result.exit_code == 0, result.output
        assert "500" in result.output
        assert "boom" in result.output
        assert "\x1b" not in result.output

    def test_no_requests(self, runner, passing_trace_path):
        result = runner.invoke(cli, ["network", str(passing_trace_path), "--failed"])
        assert result.exit_code == 0, result.output
        assert "No failed requests found" in result.output


class TestDomCommand:
    """Tests for the dom command."""

    def test_full_tree_json(self, runner, dom_trace_path):
        data = _json(runner.invoke(cli, ["dom", str(dom_trace_path), "--step", "2", "--format", "json"]))
        assert data["timing"] == "before"
        assert data["url"] == "https://example.com/login"
        assert data["fallbackUsed"] is False
        assert data["fallbackType"] is None
        assert data["elements"][0] == "HTML"
        assert "\\u001b" not in json.dumps(data)

    def test_after_falls_back(self, runner, dom_trace_path):
        data = _json(runner.invoke(cli, ["dom", str(dom_trace_path), "--step", "2", "--after", "--format", "json"]))
        assert data["timing"] == "after"
        assert data["fallbackUsed"] is True
        assert data["fallbackType"] == "before"

    def test_selector(self, runner, dom_trace_path):
        data = _json(runner.invoke(
            cli, ["dom", str(dom_trace_path), "--step", "2", "--selector", ".primary", "--format", "json"],
        ))
        (element,) = data["elements"]
        assert element["tag"] == "BUTTON"
        assert element["attrs"]["id"] == "submit"
        assert element["text"] == "Sign in"
        assert element["children"] == ["Sign in"]

    def test_interactive(self, runner, dom_trace_path):
        data = _json(runner.invoke(
            cli, ["dom", str(dom_trace_path), "--step", "2", "--interactive", "--format", "json"],
        ))
        assert [e["tag"] for e in data["elements"]] == ["INPUT", "BUTTON", "A"]
        assert "children" not in data["elements"][0]

    def test_text_render(self, runner, dom_trace_path):
        result = runner.invoke(cli, ["dom", str(dom_trace_path), "--step", "2"])
        assert result.exit_code == 0, result.output
        assert '<form id="login" class="card">' in result.output
        assert "__playwright" not in result.output
        assert "Welcome" in result.output

    def test_no_match(self, runner, dom_trace_path):
        result = runner.invoke(cli, ["dom", str(dom_trace_path), "--step", "2", "--selector", "#nope"])
        assert result.exit_code == 0, result.output
        assert "No elements matching" in result.output

    def test_exclusive_flags(self, runner, dom_trace_path):
        result = runner.invoke(cli, ["dom", str(dom_trace_path), "--step", "2", "--action", "--after"])
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output

    def test_no_snapshot(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["dom", str(failing_trace_path), "--step", "2"])
        assert result.exit_code == 1
        assert "No full DOM snapshot" in result.output


class TestScreenshotCommand:
    """Tests for the screenshot command."""

    def test_requires_list(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["screenshot", str(failing_trace_path), "--step", "2"])
        assert result.exit_code == 1
        assert "Must specify --list" in result.output

    def test_list_json(self, runner, failing_trace_path):
        data = _json(runner.invoke(
            cli, ["screenshot", str(failing_trace_path), "--step", "2", "--list", "--format", "json"],
        ))
        assert data["method"] == "goto"
        shots = data["screenshots"]
        assert [s["position"] for s in shots] == ["before", "during"]
        assert shots[0]["dimensions"] is None
        assert shots[1]["dimensions"] == {"width": 1280, "height": 720}
        assert shots[1]["relativeToStart"] == 140

    def test_list_text(self, runner, failing_trace_path):
        result = runner.invoke(cli, ["screenshot", str(failing_trace_path), "--step", "1", "--list"])
        assert result.exit_code == 0, result.output
        assert "Available screenshots (2 total)" in result.output
        assert "1280x720px" in result.output

    def test_none_available(self, runner, passing_trace_path):
        result = runner.invoke(cli, ["screenshot", str(passing_trace_path), "--step", "1", "--list"])
        assert result.exit_code == 0, result.output
        assert "No screenshots available" in result.output


def _stored_trace_with_damaged_entry(path: Path, name: str, data: bytes) -> Path:
    """Stored (uncompressed) archive whose ``name`` entry fails its CRC check."""
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr("trace.trace", to_ndjson(five_step_events()))
        zf.writestr(name, data)
    raw = bytearray(path.read_bytes())
    raw[raw.find(data) + len(data) // 2] ^= 0xFF
    path.write_bytes(bytes(raw))
    return path


class TestReadErrorsAfterLoad:
    """Entries that fail to inflate after a successful load exit cleanly."""

    def test_damaged_network_log(self, runner, tmp_path):
        network = to_ndjson([resource_snapshot("GET", "https://example.com/", 200)]).encode()
        path = _stored_trace_with_damaged_entry(tmp_path / "t.zip", "trace.network", network)
        result = runner.invoke(cli, ["network", str(path)])
        assert result.exit_code == 1
        assert not isinstance(result.exception, TraceError)
        assert "Error reading trace" in result.output
        assert "trace.network" in result.output

    def test_damaged_screenshot(self, runner, tmp_path):
        name = f"resources/page@1-{WALL_TIME + 120}.png"
        path = _stored_trace_with_damaged_entry(tmp_path / "t.zip", name, png_bytes(64, 48))
        result = runner.invoke(cli, ["screenshot", str(path), "--step", "2", "--list"])
        assert result.exit_code == 1
        assert not isinstance(result.exception, TraceError)
        assert "Error reading trace" in result.output
