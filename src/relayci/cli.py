# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from relayci.cache import CacheManager, FileCacheBackend
from relayci.dag import validate_graph
from relayci.errors import CacheError, SchemaError
from relayci.git_facts.git import current_branch
from relayci.loader import load_pipeline
from relayci.model import EXIT_INTERNAL, EXIT_SCHEMA, Event
from relayci.runner import run_pipeline
from relayci.settings import CACHE_DIR, CACHE_KEEP, MAX_WORKERS
from relayci.ui.console import Console, get_console, set_console


def _load_or_exit(ctx: click.Context, pipeline_file: str):
    console = get_console()
    try:
        return load_pipeline(pipeline_file)
    except SchemaError as e:
        console.print_error(
            "Invalid pipeline",
            e.message,
            details=e.violations,
            suggestion=f"Fix {pipeline_file} and run again. The pipeline was not started.",
        )
        ctx.exit(EXIT_SCHEMA)


def _default_branch(workspace: str) -> str:
    console = get_console()
    try:
        return current_branch(workspace)
    except (subprocess.CalledProcessError, FileNotFoundError):
        console.print_error(
            "Could not determine branch",
            "No --branch given and the workspace is not a git repository.",
            suggestion="Specify the branch explicitly:\n  relayci run pipeline.yml --event push --branch main",
        )
        sys.exit(EXIT_SCHEMA)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """relayci - event-triggered, cache-aware pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("pipeline_file", type=click.Path(dir_okay=False))
@click.option("--event", "event_type", required=True, help="Event type (push, pull_request, merge_group, ...)")
@click.option("--branch", default=None, help="Branch the event refers to (defaults to the current git branch)")
@click.option("--workers", default=MAX_WORKERS, type=click.IntRange(min=1), help="Number of parallel jobs")
@click.option("--cache-dir", default=CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--cache-keep", default=CACHE_KEEP, show_default=True, type=click.IntRange(min=1),
              help="Entries kept per cache key prefix")
@click.option("--workspace", default=".", show_default=True, type=click.Path(file_okay=False),
              help="Directory steps run in")
@click.option("--clean-env/--inherit-env", default=False, show_default=True,
              help="Do not pass the host environment to steps")
@click.pass_context
def run(ctx, pipeline_file, event_type, branch, workers, cache_dir, cache_keep, workspace, clean_env):
    """Run PIPELINE_FILE for one repository event."""
    console = get_console()

    pipeline = _load_or_exit(ctx, pipeline_file)
    event = Event(type=event_type, branch=branch or _default_branch(workspace))

    try:
        cache = CacheManager(FileCacheBackend(cache_dir), keep=cache_keep, console=console)
    except CacheError as e:
        console.print_error("Cache backend unavailable", str(e))
        ctx.exit(EXIT_INTERNAL)

    try:
        result = run_pipeline(
            pipeline,
            event,
            cache=cache,
            workspace=Path(workspace),
            max_workers=workers,
            base_env={} if clean_env else None,
            console=console,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_INTERNAL)

    console.print_results(result)
    sys.exit(result.exit_code)


@cli.command()
@click.argument("pipeline_file", type=click.Path(dir_okay=False))
@click.pass_context
def validate(ctx, pipeline_file):
    """Validate PIPELINE_FILE and print its job stages."""
    console = get_console()
    pipeline = _load_or_exit(ctx, pipeline_file)
    levels = validate_graph(pipeline.jobs.values())

    console.print_info(f"Pipeline: {pipeline.name}")
    for trigger in pipeline.triggers:
        console.print_info(f"  on {sorted(trigger.events)} branches {list(trigger.branches)}")
    for idx, level in enumerate(levels):
        console.print_info(f"=== Stage {idx + 1}: {level} ===")
        for name in level:
            job = pipeline.jobs[name]
            for step in job.steps:
                console.print_info(f"  [{name}] {step.label}")


if __name__ == "__main__":
    cli()
