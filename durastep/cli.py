"""Command line interface for inspecting executions and running workers."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

import typer

from durastep.config import load_config
from durastep.constants import DEFAULT_CLEAR_BATCH_SIZE
from durastep.engine import get_engine
from durastep.persistence import get_store
from durastep.persistence.models import Execution, utcnow
from durastep.worker import Worker

app = typer.Typer(help="CLI for durastep workflows")

# Command groups
execution_app = typer.Typer(help="Commands for inspecting executions")
worker_app = typer.Typer(help="Commands for running workers")

app.add_typer(execution_app, name="execution")
app.add_typer(worker_app, name="worker")


@app.callback()
def main() -> None:
    """durastep CLI entry point."""
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())


def _status(execution: Execution) -> str:
    return "FINISHED" if execution.finished else f"AT {execution.recover_to}"


def _job_class(execution: Execution) -> str:
    return execution.serialized_job.get("job_class", "?")


@execution_app.command("list")
def execution_list(
    status: Optional[str] = typer.Option(
        None, help="Only show 'finished' or 'outstanding' executions"
    ),
) -> None:
    """
    List executions with their job class and recovery point.

    Example:
        durastep execution list
        durastep execution list --status outstanding
        # Output: 1    app.jobs:ChargeOrder    FINISHED
        #         2    app.jobs:ChargeOrder    AT charge
    """
    if status not in (None, "finished", "outstanding"):
        typer.secho("--status must be 'finished' or 'outstanding'", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    finished = None if status is None else status == "finished"
    store = get_store()
    executions = asyncio.run(store.list_executions(finished=finished))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{_job_class(execution)}\t{_status(execution)}")


@execution_app.command("show")
def execution_show(execution_id: int) -> None:
    """
    Show one execution: its steps, entry log and context values.

    Example:
        durastep execution show 2
        # Output: Execution 2 (app.jobs:ChargeOrder): AT charge
        #         Steps: reserve -> charge
        #         - 10:00:01 reserve started
        #         - 10:00:02 reserve succeeded
    """
    store = get_store()

    async def load():
        execution = await store.get_execution(execution_id)
        if execution is None:
            return None, [], {}
        entries = await store.list_entries(execution_id)
        values = await store.list_values(execution_id)
        return execution, entries, values

    execution, entries, values = asyncio.run(load())
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)

    typer.echo(f"Execution {execution.id} ({_job_class(execution)}): {_status(execution)}")
    typer.echo(f"Steps: {' -> '.join(execution.definition)}")
    if values:
        typer.echo(f"Context: {values}")
    for entry in entries:
        typer.echo(f"- {entry.timestamp.isoformat()} {entry.step} {entry.action}")


@execution_app.command("resume")
def execution_resume(execution_id: int) -> None:
    """Re-enqueue the job of an unfinished execution."""
    engine = get_engine()

    async def resume():
        execution = await engine.store.get_execution(execution_id)
        if execution is None or execution.finished:
            return execution, None
        return execution, await engine.enqueue_execution(execution)

    execution, handle = asyncio.run(resume())
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    if handle is None:
        typer.echo(f"Execution {execution_id} already finished")
        return
    typer.echo(f"Enqueued job {handle.job_id} on queue {handle.queue_name}")


@execution_app.command("clear")
def execution_clear(
    older_than_days: int = typer.Option(7, help="Only clear executions last run this long ago"),
    batch_size: int = typer.Option(DEFAULT_CLEAR_BATCH_SIZE, help="Rows deleted per batch"),
) -> None:
    """
    Delete finished executions together with their entries and context.

    Example:
        durastep execution clear --older-than-days 30
        # Output: Cleared 12 finished executions
    """
    store = get_store()
    cutoff = utcnow() - timedelta(days=older_than_days)
    cleared = asyncio.run(
        store.clear_finished_executions(cutoff, batch_size=batch_size)
    )
    typer.echo(f"Cleared {cleared} finished executions")


@worker_app.command("run")
def worker_run(
    queue: Optional[str] = typer.Option(None, help="Queue to consume"),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run indefinitely)"
    ),
    restore_unacked: bool = typer.Option(
        False, help="Requeue jobs a crashed worker left unacknowledged before starting"
    ),
) -> None:
    """
    Run a worker that performs jobs from a queue.

    Example:
        durastep worker run --queue default --lifespan 300
        durastep worker run --restore-unacked
    """
    worker = Worker(queue_name=queue)
    typer.echo(f"Starting worker on queue: {worker.queue_name}")

    async def run():
        await worker.queue.connect()
        try:
            await worker.start(lifespan=lifespan, restore_unacked=restore_unacked)
        finally:
            await worker.queue.disconnect()

    asyncio.run(run())


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
