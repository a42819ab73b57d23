"""CLI entry point for inspecting Playwright trace archives."""

from __future__ import annotations

import functools
import json
import logging
import sys
from typing import Any, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from pwtrace.errors import TraceError
from pwtrace.models.config import TraceConfig, TraceLimits
from pwtrace.models.trace import Action
from pwtrace.snapshots.dom import find_all, is_interactive, render, select
from pwtrace.trace import Trace
from pwtrace.utils.image import image_dimensions
from pwtrace.utils.sanitize import safe, sanitize_value

console = Console()
err_console = Console(stderr=True)

RAW_RENDER_DEPTH = 200


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{round(ms)}ms"
    return f"{ms / 1000:.1f}s"


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def fail(message: str) -> None:
    err_console.print(f"[red]{escape(message)}[/red]")
    sys.exit(1)


def load_trace(ctx: click.Context, tracefile: str) -> Trace:
    try:
        trace = Trace(tracefile, ctx.obj["config"]).load()
    except TraceError as e:
        fail(f"Error loading trace: {e}")
    ctx.call_on_close(trace.close)
    return trace


def handles_trace_errors(command):
    """Turn a TraceError raised after loading into a one-line failure."""

    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except TraceError as e:
            fail(f"Error reading trace: {e}")

    return wrapper


def require_step(trace: Trace, step: int) -> Action:
    if step < 1:
        fail("Step number must be a positive integer")
    action = trace.get_action(step)
    if action is None:
        fail(f"Step {step} not found (trace has {trace.action_count} actions)")
    return action


def action_target(action: Action) -> str:
    params = action.params
    for key in ("url", "selector", "expression", "value", "key"):
        if params.get(key):
            return safe(params[key], 60)
    return ""


def source_label(action: Action) -> str:
    loc = action.source_location
    if isinstance(loc, dict) and loc.get("file"):
        filename = str(loc["file"]).replace("\\", "/").rsplit("/", 1)[-1]
        return safe(f"{filename}:{loc.get('line', '?')}", 60)
    return ""


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "-c", "config_path", default=None, help="Config file path")
@click.option("--max-entries", type=int, default=None, help="Max total zip entries")
@click.option("--max-entry-size", type=int, default=None, help="Max per-entry uncompressed size in bytes")
@click.option("--max-size", type=int, default=None, help="Max uncompressed zip size in bytes")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_path: Optional[str],
    max_entries: Optional[int],
    max_entry_size: Optional[int],
    max_size: Optional[int],
) -> None:
    """Extract and analyze Playwright trace files from the command line."""
    setup_logging(verbose)
    try:
        cfg = TraceConfig.load(config_path) if config_path else TraceConfig()
        # Flags override the config file or, without one, the environment
        limits = cfg.limits if config_path else TraceLimits.from_env()
        cfg.limits = limits.override(
            max_entries=max_entries,
            max_entry_size=max_entry_size,
            max_total_size=max_size,
        )
    except FileNotFoundError as e:
        fail(str(e))
    except (ValidationError, ValueError) as e:
        fail(f"Invalid configuration: {e}")
    ctx.obj = {"config": cfg}


@cli.command()
@click.argument("tracefile")
@click.option("--format", "fmt", type=click.Choice(["table", "json"]), default="table")
@click.pass_context
@handles_trace_errors
def show(ctx: click.Context, tracefile: str, fmt: str) -> None:
    """Show the action table, highlighting failures."""
    trace = load_trace(ctx, tracefile)
    failed = trace.get_failed_actions()
    result = "FAILED" if failed else "PASSED"

    if fmt == "json":
        echo_json({
            "duration_ms": trace.get_total_duration(),
            "result": result,
            "actions": [
                {
                    "step": i,
                    "method": safe(a.method, 40),
                    "status": a.status,
                    "target": action_target(a),
                    "duration_ms": a.duration,
                    "step_title": safe(a.step_title, 200) if a.step_title else None,
                    "nesting_depth": a.nesting_depth,
                    "source": source_label(a) or None,
                    "error": safe(a.error_message, 400) if a.failed else None,
                }
                for i, a in enumerate(trace.actions, 1)
            ],
        })
        return

    console.print(
        f"Duration: {format_duration(trace.get_total_duration())} | "
        f"Actions: {trace.action_count} | Result: "
        + ("[red]FAILED[/red]" if failed else "[green]PASSED[/green]")
    )
    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Action")
    table.add_column("Target")
    table.add_column("Duration", justify="right")
    table.add_column("Source")
    table.add_column("Error")
    for i, a in enumerate(trace.actions, 1):
        method = "  " * a.nesting_depth + safe(a.step_title or a.method, 60)
        table.add_row(
            str(i),
            "[red]✗[/red]" if a.failed else "[green]✓[/green]",
            escape(method),
            escape(action_target(a)),
            format_duration(a.duration),
            escape(source_label(a) or "(Not captured)"),
            escape(safe(a.error_message, 80)) if a.failed else "",
        )
    console.print(table)


@cli.command()
@click.argument("tracefile")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
@handles_trace_errors
def summary(ctx: click.Context, tracefile: str, fmt: str) -> None:
    """Summarize the run: result, action mix, console and screenshots."""
    trace = load_trace(ctx, tracefile)
    failed_step = trace.first_failed_step()
    by_method = {safe(k, 40): v for k, v in trace.count_by_method().items()}
    counts = trace.console_counts()
    screenshots = trace.get_screenshots()

    if fmt == "json":
        echo_json({
            "duration_ms": trace.get_total_duration(),
            "result": "FAILED" if failed_step else "PASSED",
            "failed_step": failed_step,
            "actions": {"total": trace.action_count, "by_method": by_method},
            "console": {
                "total": counts["total"],
                "errors": counts["error"],
                "warnings": counts["warning"],
                "logs": counts["log"],
            },
            "screenshots": len(screenshots),
            "malformed_lines": trace.malformed_lines,
        })
        return

    table = Table(title="Trace Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Duration", format_duration(trace.get_total_duration()))
    if failed_step:
        table.add_row("Result", f"[red]FAILED at step {failed_step}[/red]")
    else:
        table.add_row("Result", "[green]PASSED[/green]")
    table.add_row("Browser", escape(safe(trace.metadata.browser_name or "unknown", 40)))
    table.add_row(
        "Actions",
        escape(f"{trace.action_count} (" + ", ".join(f"{v} {k}" for k, v in by_method.items()) + ")"),
    )
    table.add_row(
        "Console",
        f"{counts['total']} ({counts['error']} errors, {counts['warning']} warnings)",
    )
    table.add_row("Screenshots", str(len(screenshots)))
    if trace.malformed_lines:
        table.add_row("Skipped lines", f"[yellow]{trace.malformed_lines}[/yellow]")
    console.print(table)


@cli.command()
@click.argument("tracefile")
@click.argument("step_number", type=int)
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
@handles_trace_errors
def step(ctx: click.Context, tracefile: str, step_number: int, fmt: str) -> None:
    """Show details for one step."""
    trace = load_trace(ctx, tracefile)
    action = require_step(trace, step_number)
    errors = trace.get_console_messages(level="error", action=action)
    before_shots = [p for p in trace.screenshots_for_action(action) if p.position == "before"]
    screenshot = before_shots[-1].screenshot.name if before_shots else None
    params = action.params

    if fmt == "json":
        echo_json({
            "step": step_number,
            "method": safe(action.method, 40),
            "status": action.status,
            "duration_ms": action.duration,
            "step_title": safe(action.step_title, 200) if action.step_title else None,
            "nesting_depth": action.nesting_depth,
            "params": {
                "url": safe(params["url"], 400) if params.get("url") else None,
                "selector": safe(params["selector"], 200) if params.get("selector") else None,
                "expression": safe(params["expression"], 200) if params.get("expression") else None,
            },
            "error": safe(action.error_message, 800) if action.failed else None,
            "console_errors": [m.text for m in errors],
            "screenshot": safe(screenshot, 400) if screenshot else None,
        })
        return

    console.print(f"\n[bold]Step {step_number}: {escape(safe(action.method, 40))}[/bold]")
    if action.step_title:
        console.print(f"Test Step: {escape(safe(action.step_title, 200))}")
    console.print("═" * 60)
    status = action.status.upper()
    console.print(f"Status:   {'[red]' + status + '[/red]' if action.failed else '[green]' + status + '[/green]'}")
    console.print(f"Duration: {format_duration(action.duration)}")
    for label, key, limit in (("URL", "url", 400), ("Selector", "selector", 200), ("Expected", "expression", 200)):
        if params.get(key):
            console.print(f"{label + ':':<10}{escape(safe(params[key], limit))}")
    if action.failed:
        console.print("\nError:")
        console.print(f"  {escape(safe(action.error_message, 800))}")
    if errors:
        console.print("\nConsole Errors (around this step):")
        for m in errors:
            console.print(f"  \\[error] {escape(safe(m.text, 400))}")
    if screenshot:
        console.print(f"\nScreenshot: {escape(safe(screenshot, 400))}")
    console.print()


@cli.command("console")
@click.argument("tracefile")
@click.option("--level", type=click.Choice(["error", "warning", "info"]), default=None)
@click.option("--step", "step_number", type=int, default=None, help="Only messages near this step")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
@handles_trace_errors
def console_cmd(ctx: click.Context, tracefile: str, level: Optional[str], step_number: Optional[int], fmt: str) -> None:
    """List browser console messages."""
    trace = load_trace(ctx, tracefile)
    action = require_step(trace, step_number) if step_number is not None else None
    messages = trace.get_console_messages(level=level, action=action)

    if fmt == "json":
        echo_json([{"level": m.level, "time_ms": m.time, "text": m.text} for m in messages])
        return
    if not messages:
        console.print("\nNo console messages found\n")
        return
    for m in messages:
        console.print(f"\\[{escape(m.level):<7}] {m.time / 1000:.2f}s  {escape(m.text)}")


@cli.command()
@click.argument("tracefile")
@click.option("--failed", is_flag=True, help="Only requests with status >= 400")
@click.option("--format", "fmt", type=click.Choice(["table", "json"]), default="table")
@click.pass_context
@handles_trace_errors
def network(ctx: click.Context, tracefile: str, failed: bool, fmt: str) -> None:
    """List network requests with sensitive headers redacted."""
    trace = load_trace(ctx, tracefile)
    requests = trace.get_network_requests(failed_only=failed)

    if fmt == "json":
        echo_json([
            {
                "method": r.method,
                "url": r.url,
                "status": r.status,
                "duration_ms": r.duration_ms,
                "mime_type": r.mime_type,
                "request_headers": r.request_headers,
                "response_headers": r.response_headers,
            }
            for r in requests
        ])
        return

    if not requests:
        console.print("No failed requests found" if failed else "No network requests found")
        return

    if failed:
        for r in requests:
            console.print(f"\n{escape(r.method)} {escape(r.url)} → {r.status} ({r.duration_ms:.0f}ms)")
            if "json" in r.mime_type:
                body = trace.read_resource_text(r.response_sha1)
                if body:
                    console.print(f"  Response: {escape(body)}")
        return

    table = Table()
    table.add_column("Method")
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    for r in requests:
        status = f"[red]{r.status} ✗[/red]" if r.failed else str(r.status)
        table.add_row(escape(r.method), escape(r.url), status, f"{r.duration_ms:.0f}ms")
    console.print(table)


def _element_json(node, include_children: bool = False) -> dict:
    data = {
        "tag": safe(node.tag, 100),
        "attrs": sanitize_value(node.attrs, 400),
        "text": safe(node.text, 400),
    }
    if include_children:
        data["children"] = sanitize_value(node.children, 400)
    return data


@cli.command()
@click.argument("tracefile")
@click.option("--step", "step_number", type=int, required=True)
@click.option("--action", "phase_action", is_flag=True, help="Show the snapshot taken during the action")
@click.option("--after", "phase_after", is_flag=True, help="Show the snapshot taken after the action")
@click.option("--selector", default=None, help="#id, .class or tag name")
@click.option("--interactive", is_flag=True, help="Only interactive elements")
@click.option("--raw", is_flag=True, help="Keep every attribute and render deeper")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
@handles_trace_errors
def dom(
    ctx: click.Context,
    tracefile: str,
    step_number: int,
    phase_action: bool,
    phase_after: bool,
    selector: Optional[str],
    interactive: bool,
    raw: bool,
    fmt: str,
) -> None:
    """Show the DOM snapshot around a step."""
    if phase_action and phase_after:
        fail("--action and --after are mutually exclusive")
    trace = load_trace(ctx, tracefile)
    action = require_step(trace, step_number)
    phase = "action" if phase_action else "after" if phase_after else "before"

    resolution = trace.resolve_snapshot(action, phase)
    snapshot = resolution.snapshot
    if snapshot is None:
        fail("No full DOM snapshot found near this step")

    if interactive:
        nodes = find_all(snapshot.html, is_interactive)
    elif selector:
        nodes = select(snapshot.html, selector)
    else:
        nodes = None

    if fmt == "json":
        if nodes is None:
            elements = sanitize_value(snapshot.html, 2000)
        else:
            elements = [_element_json(n, include_children=bool(selector) and not interactive) for n in nodes]
        echo_json({
            "step": step_number,
            "timing": phase,
            "url": safe(snapshot.frame_url, 400),
            "fallbackUsed": resolution.fallback_used,
            "fallbackType": resolution.fallback_type if resolution.fallback_used else None,
            "elements": elements,
        })
        return

    console.print(f"\nDOM at step {step_number} ({phase})")
    if resolution.fallback_used:
        console.print(
            f"[yellow]Note: {phase}@ snapshot was empty, showing "
            f"{resolution.fallback_type}@ snapshot instead[/yellow]"
        )
    console.print(f"URL: {escape(safe(snapshot.frame_url, 400))}")
    console.print("─" * 60)

    if nodes is None:
        html = render(
            snapshot.html,
            max_depth=RAW_RENDER_DEPTH if raw else 10,
            simplify=not raw,
        )
        console.print(escape(safe(html, 20000)))
        return

    if not nodes:
        what = "interactive elements" if interactive else f'elements matching "{safe(selector, 200)}"'
        console.print(escape(f"No {what} found"))
        return

    heading = "interactive element(s)" if interactive else f'element(s) matching "{safe(selector, 200)}"'
    console.print(escape(f"Found {len(nodes)} {heading}:") + "\n")
    for idx, node in enumerate(nodes, 1):
        console.print(f"Element {idx}:")
        console.print(f"  Tag: {escape(safe(node.tag, 100))}")
        attrs = [(k, v) for k, v in node.attrs.items() if not k.startswith("__playwright") and v is not None]
        if attrs:
            console.print("  Attributes:")
            for key, val in attrs:
                console.print(f'    {escape(safe(key, 100))}="{escape(safe(val, 100))}"')
        if node.text.strip():
            console.print(f'  Text: "{escape(safe(node.text.strip(), 200))}"')
        html = render(node.html, max_depth=0 if interactive else 2)
        console.print("  HTML:")
        for line in safe(html, 2000).split("\n"):
            console.print(f"    {escape(line)}")
        console.print()


@cli.command()
@click.argument("tracefile")
@click.option("--step", "step_number", type=int, required=True)
@click.option("--list", "list_only", is_flag=True, help="List screenshots around the step")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
@handles_trace_errors
def screenshot(ctx: click.Context, tracefile: str, step_number: int, list_only: bool, fmt: str) -> None:
    """List screenshots positioned relative to a step."""
    if not list_only:
        fail("Must specify --list (extracting screenshot files is not supported)")
    trace = load_trace(ctx, tracefile)
    action = require_step(trace, step_number)
    placements = trace.screenshots_for_action(action)

    info = []
    for idx, p in enumerate(placements, 1):
        dims = image_dimensions(trace.read_screenshot(p.screenshot))
        info.append({
            "index": idx,
            "name": safe(p.screenshot.name, 400),
            "timestamp": p.relative_time,
            "position": p.position,
            "relativeToStart": p.offset_from_start,
            "relativeToEnd": p.offset_from_end,
            "sizeKB": round(p.screenshot.size / 1024, 1),
            "dimensions": {"width": dims[0], "height": dims[1]} if dims else None,
        })

    if fmt == "json":
        echo_json({
            "step": step_number,
            "method": safe(action.method, 40),
            "startTime": action.start_time,
            "endTime": action.end_time,
            "duration": action.duration,
            "screenshots": info,
        })
        return

    console.print(f"Step {step_number}: {escape(safe(action.method, 40))}")
    console.print("Timing:")
    console.print(f"  Start: {action.start_time:.2f}ms")
    console.print(f"  End: {action.end_time:.2f}ms")
    console.print(f"  Duration: {action.duration:.2f}ms\n")
    if not info:
        console.print("No screenshots available in trace")
        return
    console.print(f"Available screenshots ({len(info)} total):")
    for item in info:
        dims = item["dimensions"]
        dim_str = f"{dims['width']}x{dims['height']}px" if dims else "unknown"
        if item["position"] == "before":
            timing = f"{abs(item['relativeToStart']):.2f}ms before start"
        elif item["position"] == "during":
            timing = (f"{item['relativeToStart']:.2f}ms after start, "
                      f"{abs(item['relativeToEnd']):.2f}ms before end")
        else:
            timing = f"{item['relativeToEnd']:.2f}ms after end"
        console.print(
            f"  \\[{item['index']}] at {item['timestamp']:.1f}ms ({timing}) - "
            f"{item['sizeKB']}KB - {dim_str}"
        )


if __name__ == "__main__":
    cli()
