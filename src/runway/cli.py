# cli.py
from __future__ import annotations

import json
import logging
import subprocess
import sys
from pathlib import Path

import click

from runway import settings
from runway.errors import DefinitionError
from runway.git_facts.git import current_branch, repo_root
from runway.loader import load_file
from runway.model import PipelineDefinition
from runway.results import EXIT_DEFINITION_ERROR
from runway.runner import build_executor, run_workflow
from runway.scheduler import plan as plan_jobs
from runway.ui.console import Console, get_console, set_console


def _load_definition(ctx: click.Context) -> PipelineDefinition:
    """Load the definition file; exit with the definition-error code on failure."""
    console = get_console()
    config = ctx.obj["config"]
    try:
        return load_file(config)
    except DefinitionError as e:
        console.print_error(
            "Invalid pipeline definition",
            e.message,
            details=[f"{k}: {v}" for k, v in e.details.items()] or None,
            suggestion=f"Fix {config} and retry:\n  runway validate --config {config}"
            if Path(config).exists() else f"Create {config} or pass --config <file>.",
        )
        sys.exit(EXIT_DEFINITION_ERROR)


def _default_branch() -> str:
    console = get_console()
    try:
        return current_branch()
    except subprocess.CalledProcessError:
        console.print_error(
            "Could not determine branch",
            "No --branch specified and the current directory is not on a git branch.",
            suggestion="Please specify --branch explicitly:\n  runway run <workflow> --branch <name>",
        )
        sys.exit(1)
    except FileNotFoundError:
        console.print_error(
            "Git command not found",
            "Could not find git command.",
            suggestion="Install Git or specify --branch explicitly.",
        )
        sys.exit(1)


def _default_source() -> str:
    try:
        return str(repo_root())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return str(Path(".").resolve())


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option(
    "--config",
    default=settings.CONFIG_FILE,
    show_default=True,
    help="Pipeline definition file",
)
@click.pass_context
def cli(ctx, debug, config):
    """runway: run declarative CI workflows locally."""
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config"] = config


@cli.command()
@click.argument("workflow")
@click.option("--branch", default=None, help="Trigger branch (defaults to the current git branch)")
@click.option("--ref", default=None, help="Git ref to check out (defaults to the branch)")
@click.option("--source", default=None, help="Repository to check out (defaults to the enclosing git repo)")
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Number of parallel jobs")
@click.option("--artifacts-dir", default=settings.ARTIFACTS_DIR, show_default=True, help="Artifact destination root")
@click.option("--workspace-dir", default=settings.WORKSPACE_DIR, show_default=True, help="Job workspace root")
@click.option("--keep-workspaces", is_flag=True, default=False, help="Do not delete job workspaces afterwards")
@click.option("--stream/--no-stream", default=True, show_default=True, help="Echo step output while it runs")
@click.option("--print-plan/--no-print-plan", default=True, show_default=True, help="Print selected/skipped jobs")
@click.option("--report", default=None, type=click.Path(dir_okay=False), help="Write a JSON result report")
@click.pass_context
def run(ctx, workflow, branch, ref, source, workers, artifacts_dir, workspace_dir, keep_workspaces,
        stream, print_plan, report):
    """Run WORKFLOW for a branch. Exit code 0 only if every eligible job succeeds."""
    console = get_console()
    console.stream_output = stream

    definition = _load_definition(ctx)
    if branch is None:
        branch = _default_branch()

    try:
        executor = build_executor(
            source=source or _default_source(),
            artifacts_root=artifacts_dir,
            workspace_root=workspace_dir,
            keep_workspaces=keep_workspaces,
        )
        result = run_workflow(
            definition,
            workflow,
            branch,
            executor=executor,
            max_workers=workers,
            ref=ref,
            print_plan=print_plan,
        )
    except DefinitionError as e:
        console.print_error("Invalid pipeline definition", e.message)
        sys.exit(EXIT_DEFINITION_ERROR)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if report:
        Path(report).write_text(json.dumps(result.to_dict(), indent=2))
        console.print_debug(f"report written to {report}")

    sys.exit(result.exit_code)


@cli.command()
@click.argument("workflow")
@click.option("--branch", default=None, help="Trigger branch (defaults to the current git branch)")
@click.pass_context
def plan(ctx, workflow, branch):
    """Show which jobs of WORKFLOW would run for a branch."""
    console = get_console()
    definition = _load_definition(ctx)
    if branch is None:
        branch = _default_branch()

    try:
        wf = definition.workflow(workflow)
    except DefinitionError as e:
        console.print_error("Unknown workflow", e.message)
        sys.exit(EXIT_DEFINITION_ERROR)

    console.print_info(f"Plan for {wf.id} on {branch!r}:")
    for p in plan_jobs(wf, branch):
        if p.eligible:
            console.print_plan_job(p.job_id, p.reason)
        else:
            console.print_plan_job_skipped(p.job_id, p.reason)


@cli.command()
@click.pass_context
def validate(ctx):
    """Load and validate the pipeline definition."""
    definition = _load_definition(ctx)
    get_console().print_info(
        f"{ctx.obj['config']}: OK ({len(definition.jobs)} job(s), {len(definition.workflows)} workflow(s))"
    )


@cli.command(name="list")
@click.pass_context
def list_workflows(ctx):
    """List workflows and their jobs."""
    console = get_console()
    definition = _load_definition(ctx)
    for wf in definition.workflows.values():
        console.print_info(wf.id)
        for ref in wf.jobs:
            job = definition.jobs[ref.job_id]
            env = getattr(job.environment, "image", "machine")
            suffix = f" [{', '.join(p.raw for p in ref.filter.only)}]" if ref.filter else ""
            console.print_info(f"  {ref.job_id} ({env}, {len(job.steps)} step(s)){suffix}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
