from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from healthgate.config.loader import load_stack, validate_stack
from healthgate.config.schema import StackSpec, UnitSpec
from healthgate.exec.launcher import ProcessLauncher
from healthgate.exec.orchestrator import Orchestrator
from healthgate.observe.logging import LogFormat, configure_logging
from healthgate.observe.sinks import EventSink, JsonlSink, log_sink
from healthgate.probe.check import check
from healthgate.report.render_md import render_markdown
from healthgate.report.summarize import build_summary
from healthgate.state.model import StackResult
from healthgate.util.errors import ConfigError

app = typer.Typer(help="Dependency-gated stack startup with health supervision")
console = Console()

_STATUS_STYLE = {
    "HEALTHY": "green",
    "DEGRADED": "yellow",
    "FAILED": "red",
    "STOPPED": "dim",
}


def _exit_code_for_result(result: StackResult) -> int:
    if result.status == "UP":
        return 0
    if result.status == "CANCELLED":
        return 4
    return 3


def _load_or_exit(stack_path: Path) -> StackSpec:
    try:
        return load_stack(stack_path)
    except ConfigError as exc:
        console.print(f"[red]Stack validation error:[/red] {exc}")
        raise typer.Exit(2) from exc


def _describe_dependencies(unit: UnitSpec) -> str:
    if not unit.dependencies:
        return "-"
    return ", ".join(f"{dep.name} ({'hard' if dep.required else 'soft'})" for dep in unit.dependencies)


def _print_units(result: StackResult, title: str) -> None:
    table = Table(title=title)
    table.add_column("unit")
    table.add_column("status")
    table.add_column("attempts", justify="right")
    table.add_column("restarts", justify="right")
    table.add_column("reason")
    for name, unit in result.units.items():
        style = _STATUS_STYLE.get(unit.status, "")
        table.add_row(
            name,
            f"[{style}]{unit.status}[/{style}]" if style else unit.status,
            str(unit.attempts),
            str(unit.restarts),
            unit.reason or "-",
        )
    console.print(table)


@app.callback()
def main(
    log_level: Annotated[str, typer.Option("--log-level", envvar="HEALTHGATE_LOG_LEVEL")] = "INFO",
    log_format: Annotated[
        str, typer.Option("--log-format", envvar="HEALTHGATE_LOG_FORMAT")
    ] = "console",
) -> None:
    if log_format not in {"console", "json"}:
        console.print(f"[red]Invalid log format:[/red] {log_format}")
        raise typer.Exit(2)
    try:
        fmt: LogFormat = "json" if log_format == "json" else "console"
        configure_logging(log_level, fmt)
    except ValueError as exc:
        console.print(f"[red]Invalid log level:[/red] {log_level}")
        raise typer.Exit(2) from exc


@app.command("check")
def check_stack(stack_path: Annotated[Path, typer.Argument(exists=True)]) -> None:
    """Validate a stack file and print its start order."""
    stack = _load_or_exit(stack_path)
    graph = validate_stack(stack)
    units = {unit.name: unit for unit in stack.units}
    table = Table(title=f"Start Order: {stack.name or stack_path.name}")
    table.add_column("#")
    table.add_column("unit")
    table.add_column("depends_on")
    table.add_column("probe")
    table.add_column("restart")
    for idx, name in enumerate(graph.order, start=1):
        unit = units[name]
        restart = unit.restart.mode
        if unit.restart.mode != "never":
            restart = f"{restart} (max {unit.restart.max_restarts})"
        table.add_row(
            str(idx), name, _describe_dependencies(unit), unit.health_check.kind, restart
        )
    console.print(table)


async def _run_stack(
    stack: StackSpec, launcher: ProcessLauncher, sinks: list[EventSink], *, wait: bool
) -> tuple[StackResult, StackResult]:
    orchestrator = Orchestrator(launcher, sinks=sinks)
    interrupted = asyncio.Event()

    def _on_signal() -> None:
        interrupted.set()
        orchestrator.request_stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _on_signal)
    try:
        result = await orchestrator.run(stack.units)
        _print_units(result, f"Stack {result.status}")
        if wait and result.ok and not interrupted.is_set():
            console.print("stack is up, supervising until interrupted (Ctrl-C to stop)")
            await interrupted.wait()
        final = await orchestrator.shutdown()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
    return result, final


@app.command()
def up(
    stack_path: Annotated[Path, typer.Argument(exists=True)],
    workdir: Annotated[Path, typer.Option("--workdir")] = Path("."),
    log_dir: Annotated[Path | None, typer.Option("--log-dir", envvar="HEALTHGATE_LOG_DIR")] = None,
    events: Annotated[Path | None, typer.Option("--events")] = None,
    report: Annotated[Path | None, typer.Option("--report")] = None,
    wait: Annotated[bool, typer.Option("--wait/--no-wait")] = True,
) -> None:
    """Start every unit in dependency order and supervise its health."""
    stack = _load_or_exit(stack_path)
    if not workdir.is_dir():
        console.print(f"[red]Invalid workdir:[/red] {workdir}")
        raise typer.Exit(2)

    sinks: list[EventSink] = [log_sink]
    if events is not None:
        sinks.append(JsonlSink(events, fresh=True))
    launcher = ProcessLauncher(workdir=workdir, log_dir=log_dir)
    result, final = asyncio.run(_run_stack(stack, launcher, sinks, wait=wait))

    if report is not None:
        summary = build_summary(final, stack_name=stack.name, log_dir=log_dir)
        try:
            report.parent.mkdir(parents=True, exist_ok=True)
            report.write_text(render_markdown(summary) + "\n", encoding="utf-8")
        except OSError as exc:
            console.print(f"[yellow]Warning:[/yellow] failed to write report: {exc}")
        else:
            console.print(f"report: {report}")
    console.print(f"state: [bold]{result.status}[/bold]")
    if result.failed:
        console.print(f"failed: {', '.join(result.failed)}")
    raise typer.Exit(_exit_code_for_result(result))


@app.command()
def probe(
    stack_path: Annotated[Path, typer.Argument(exists=True)],
    unit_name: Annotated[str, typer.Argument()],
) -> None:
    """Run a single health probe for one unit."""
    stack = _load_or_exit(stack_path)
    unit = next((unit for unit in stack.units if unit.name == unit_name), None)
    if unit is None:
        console.print(f"[red]Unknown unit:[/red] {unit_name}")
        raise typer.Exit(2)
    if unit.health_check.kind == "process":
        console.print(
            f"[yellow]{unit.name} has a process liveness check;[/yellow] "
            "it can only be checked while the unit runs under `healthgate up`"
        )
        raise typer.Exit(2)
    result = asyncio.run(check(unit.health_check))
    style = "green" if result.healthy else "red"
    console.print(
        f"{unit.name}: [{style}]{result.outcome}[/{style}] "
        f"{result.detail} ({result.latency_ms} ms)"
    )
    raise typer.Exit(0 if result.healthy else 1)


if __name__ == "__main__":
    app()
