"""
kgflow command line.

    kgflow init                     create graph/default.ttl if absent
    kgflow list                     workflows defined in the graph
    kgflow validate WORKFLOW        structural and dependency checks
    kgflow run WORKFLOW -i k=v      execute a workflow
    kgflow tick [--watch]           evaluate hooks once (or keep polling)
    kgflow query SPARQL             run a query against the loaded graph
    kgflow receipts [--verify]      show or verify the receipt chain
    kgflow reconcile                repair the durable namespace

Exit codes follow ``ExitCode``: 0 ok, 1 failed, 2 not found, 3 invalid,
4 cancelled, 5 timeout.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Any

import click

from kgflow.config import build_settings
from kgflow.engine import KnowledgeEngine
from kgflow.errors import ExitCode, KgflowError, ValidationError, WorkflowNotFoundError
from kgflow.observability import configure_logging
from kgflow.workflow import CancellationToken

logger = logging.getLogger(__name__)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _parse_inputs(pairs: tuple[str, ...], inputs_json: str | None) -> dict[str, Any]:
    inputs: dict[str, Any] = {}
    if inputs_json:
        try:
            loaded = json.loads(inputs_json)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--inputs-json") from exc
        if not isinstance(loaded, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--inputs-json")
        inputs.update(loaded)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{pair}'", param_hint="--input")
        try:
            inputs[key] = json.loads(value)
        except json.JSONDecodeError:
            inputs[key] = value
    return inputs


def _engine(ctx: click.Context) -> KnowledgeEngine:
    engine: KnowledgeEngine = ctx.obj["engine_factory"]()
    engine.start()
    return engine


@click.group()
@click.option("--graph-dir", type=click.Path(path_type=Path), help="Directory of Turtle files")
@click.option("--durable-dir", type=click.Path(path_type=Path), help="Durable I/O root")
@click.option("--git-dir", type=click.Path(path_type=Path), help="Git repository for durable refs")
@click.option("--log-level", help="DEBUG, INFO, WARNING or ERROR")
@click.option("--now", help="Fixed ISO-8601 time for deterministic runs")
@click.pass_context
def cli(
    ctx: click.Context,
    graph_dir: Path | None,
    durable_dir: Path | None,
    git_dir: Path | None,
    log_level: str | None,
    now: str | None,
) -> None:
    """Knowledge-graph workflow engine."""
    settings = build_settings()
    overrides = {
        key: value
        for key, value in {
            "graph_dir": graph_dir,
            "durable_dir": durable_dir,
            "git_dir": git_dir,
            "log_level": log_level,
            "now": now,
        }.items()
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj.setdefault("engine_factory", lambda: KnowledgeEngine(settings))


@cli.command("init")
@click.pass_context
def init_cmd(ctx: click.Context) -> None:
    """Create the default graph file if it does not exist."""
    engine: KnowledgeEngine = ctx.obj["engine_factory"]()
    click.echo(str(engine.init_graph()))


@cli.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List workflows defined in the graph."""
    engine = _engine(ctx)
    _echo_json([summary.to_dict() for summary in engine.list_workflows()])


@cli.command("validate")
@click.argument("workflow_id")
@click.pass_context
def validate_cmd(ctx: click.Context, workflow_id: str) -> None:
    """Validate a workflow without running it."""
    engine = _engine(ctx)
    try:
        report = engine.validate(workflow_id)
    except WorkflowNotFoundError as exc:
        click.echo(str(exc), err=True)
        ctx.exit(ExitCode.NOT_FOUND)
    except KgflowError as exc:
        click.echo(str(exc), err=True)
        ctx.exit(ExitCode.VALIDATION)
    _echo_json(report.to_dict())
    ctx.exit(ExitCode.OK if report.valid else ExitCode.VALIDATION)


@cli.command("run")
@click.argument("workflow_id")
@click.option("-i", "--input", "pairs", multiple=True, help="Input as key=value (value may be JSON)")
@click.option("--inputs-json", help="Inputs as one JSON object")
@click.pass_context
def run_cmd(ctx: click.Context, workflow_id: str, pairs: tuple[str, ...], inputs_json: str | None) -> None:
    """Execute a workflow and print its result."""
    inputs = _parse_inputs(pairs, inputs_json)
    engine = _engine(ctx)
    token = CancellationToken()

    async def main():
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel, "Interrupted")
        except (NotImplementedError, RuntimeError):
            pass
        return await engine.run(workflow_id, inputs=inputs, token=token)

    try:
        run = asyncio.run(main())
    except WorkflowNotFoundError as exc:
        click.echo(str(exc), err=True)
        ctx.exit(ExitCode.NOT_FOUND)
    except ValidationError as exc:
        click.echo(str(exc), err=True)
        ctx.exit(ExitCode.VALIDATION)
    _echo_json(run.to_dict())
    ctx.exit(run.exit_code)


@cli.command("tick")
@click.option("--watch", is_flag=True, help="Keep polling until interrupted")
@click.option("--interval", type=float, help="Seconds between ticks (default from settings)")
@click.pass_context
def tick_cmd(ctx: click.Context, watch: bool, interval: float | None) -> None:
    """Evaluate every hook and fire those whose predicate holds."""
    engine = _engine(ctx)

    async def main():
        if not watch:
            return await engine.tick()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
        await engine.hooks.run(interval or engine.settings.hook_interval_s, stop)
        return []

    fired = asyncio.run(main())
    _echo_json([r.to_dict() if hasattr(r, "to_dict") else r for r in fired])


@cli.command("query")
@click.argument("text")
@click.pass_context
def query_cmd(ctx: click.Context, text: str) -> None:
    """Run a SPARQL query against the graph."""
    engine = _engine(ctx)
    try:
        result = engine.query(text)
    except KgflowError as exc:
        click.echo(str(exc), err=True)
        ctx.exit(ExitCode.FAILED)
    _echo_json(result.to_dict())


@cli.command("receipts")
@click.option("--verify", is_flag=True, help="Check the hash chain")
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_context
def receipts_cmd(ctx: click.Context, verify: bool, limit: int) -> None:
    """Show recent receipts or verify the chain."""
    engine: KnowledgeEngine = ctx.obj["engine_factory"]()
    writer = engine.durable.receipts
    if verify:
        problems = writer.verify_chain()
        for problem in problems:
            click.echo(problem, err=True)
        click.echo("chain ok" if not problems else f"{len(problems)} problems")
        ctx.exit(ExitCode.OK if not problems else ExitCode.FAILED)
    _echo_json([r.to_dict() for r in writer.receipts()[-limit:]])


@cli.command("reconcile")
@click.pass_context
def reconcile_cmd(ctx: click.Context) -> None:
    """Release expired locks, requeue stranded jobs and write missing receipts."""
    engine: KnowledgeEngine = ctx.obj["engine_factory"]()
    _echo_json(engine.reconcile().to_dict())


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
