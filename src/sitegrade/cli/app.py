"""
Root Typer application for the ``sitegrade`` CLI.

Commands:
    analyze   Submit one job of URLs and print per-URL results
    config    Show resolved orchestrator settings
    explain   Print the troubleshooting guide for an error code
"""

from __future__ import annotations

import asyncio
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from typing import Any

import typer
from typer import Typer

from sitegrade import __version__
from sitegrade.cli.utils import console, err_console, print_dict, print_json, print_rows
from sitegrade.core.events import JobEvent, JobEventType
from sitegrade.core.logging import configure_logging
from sitegrade.core.settings import OrchestratorSettings, get_settings
from sitegrade.core.troubleshooting import GUIDES, get_guide
from sitegrade.jobs.models import Job, JobStatus
from sitegrade.jobs.runner import AnalysisFunction
from sitegrade.jobs.scheduler import JobScheduler
from sitegrade.probe import HttpProbe

app = Typer(
    name="sitegrade",
    help="sitegrade: batch website analysis with retries and partial results.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("sitegrade-core")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"sitegrade {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """sitegrade CLI: analyse URLs and inspect configuration."""


# ── analyze ──────────────────────────────────────────────────────────────


def build_analysis_function(settings: OrchestratorSettings) -> AnalysisFunction:
    """Analysis function used by ``analyze`` (patched in tests)."""
    return HttpProbe(timeout=settings.per_target_timeout_seconds)


async def _run_job(
    urls: list[str],
    settings: OrchestratorSettings,
    *,
    show_progress: bool,
) -> Job:
    scheduler = JobScheduler(build_analysis_function(settings), settings)

    if show_progress:

        def on_progress(event: JobEvent) -> None:
            p = event.payload
            err_console.print(
                f"[dim]{p['progress']:>3}%[/dim] "
                f"({p['completed_count']}/{p['total_count']}) {p['current_target']}"
            )

        scheduler.on(JobEventType.PROGRESS, on_progress)

    job_id = scheduler.submit(urls)
    await scheduler.wait(job_id)
    await scheduler.join()
    return scheduler.get_job(job_id)


def _job_payload(job: Job) -> dict[str, Any]:
    return {
        **job.view().to_dict(),
        "results": job.results,
        "errors": [record.to_dict() for record in job.errors],
    }


@app.command("analyze")
def analyze(
    urls: list[str] = typer.Argument(..., help="URLs to analyse (one job)."),
    max_concurrent: int | None = typer.Option(None, "--max-concurrent", min=1, help="Max concurrent jobs."),
    timeout_ms: int | None = typer.Option(None, "--timeout-ms", min=1, help="Per-target timeout in ms."),
    retries: int | None = typer.Option(None, "--retries", min=1, help="Attempts per target."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Analyse URLs as a single job and print the results."""
    try:
        settings = get_settings(_force_reload=True)
    except ValueError as e:
        err_console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1) from e

    overrides: dict[str, Any] = {}
    if max_concurrent is not None:
        overrides["max_concurrent_jobs"] = max_concurrent
    if timeout_ms is not None:
        overrides["per_target_timeout_ms"] = timeout_ms
    if retries is not None:
        overrides["retry_attempts"] = retries
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(level=settings.log_level, json_format=settings.log_json)

    job = asyncio.run(_run_job(urls, settings, show_progress=not as_json))

    if as_json:
        print_json(_job_payload(job))
    else:
        view = job.view()
        console.print(
            f"[bold]Job[/bold] {job.id}: {view.status.value} "
            f"({view.completed_count}/{view.total_count}, {view.progress}%)"
        )
        print_rows(
            [
                {
                    "url": r.get("url"),
                    "score": r.get("overall_score"),
                    "degraded": bool(r.get("degraded")),
                }
                if isinstance(r, dict)
                else {"url": "", "score": str(r), "degraded": False}
                for r in job.results
            ],
            ["url", "score", "degraded"],
            title="Results",
        )
        if job.errors:
            print_rows(
                [record.to_dict() for record in job.errors],
                ["target", "kind", "code", "attempts", "message"],
                title="Errors",
            )

    if job.status is JobStatus.FAILED:
        raise typer.Exit(1)


# ── config ───────────────────────────────────────────────────────────────


@app.command("config")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
) -> None:
    """Show the resolved orchestrator settings."""
    try:
        settings = get_settings(_force_reload=True)
    except ValueError as e:
        err_console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1) from e

    if format == "json":
        print_json(settings.model_dump())
        return
    if format != "table":
        err_console.print(f"[red]Unknown format:[/red] {format} (expected table or json)")
        raise typer.Exit(2)

    print_dict(settings.model_dump(), title="Orchestrator Settings")


# ── explain ──────────────────────────────────────────────────────────────


@app.command("explain")
def explain(
    code: str = typer.Argument(..., help="Error code, e.g. DNS_FAILURE."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Print the troubleshooting guide for an error code."""
    guide = get_guide(code.upper())
    if guide is None:
        err_console.print(f"[red]Unknown error code:[/red] {code}")
        err_console.print(f"Known codes: {', '.join(sorted(GUIDES))}")
        raise typer.Exit(1)

    if as_json:
        print_json(guide.to_dict())
        return

    console.print(f"[bold]{guide.error_type}[/bold]")
    console.print(guide.user_message)
    console.print(f"[dim]{guide.technical_details}[/dim]")
    for heading, items in (
        ("Possible causes", guide.possible_causes),
        ("Suggested actions", guide.suggested_actions),
        ("Prevention tips", guide.prevention_tips),
    ):
        if items:
            console.print(f"\n[bold]{heading}:[/bold]")
            for item in items:
                console.print(f"  • {item}")
