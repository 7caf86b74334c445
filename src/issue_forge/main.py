"""CLI entrypoint for issue-forge."""

import logging
from pathlib import Path

import rich_click as click

from issue_forge import __version__
from issue_forge.controllers import (
    CommandResult,
    GenerateCommand,
    IssueForgeCliController,
    WorkflowCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = IssueForgeCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="issue-forge")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def issue_forge(log_level: str) -> None:
    """Generate GitHub issue drafts from a task plan with an external agent CLI."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@issue_forge.command("generate")
@click.option(
    "--state-root",
    type=click.Path(path_type=Path),
    default=None,
    help="State directory. Defaults to ISSUE_FORGE_STATE_ROOT or `.issue_forge`.",
)
@click.option("--workflow-id", required=True, help="Workflow identifier.")
@click.option(
    "--main",
    "main_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Main analysis markdown file.",
)
@click.option(
    "--tasks-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory with `NN-slug.md` task files.",
)
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Where drafts are written. Defaults to `<state-root>/<workflow-id>/draft`.",
)
@click.option("--force", is_flag=True, help="Regenerate even when a complete record exists.")
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=1),
    default=None,
    help="Overall deadline for the whole generation.",
)
def generate(  # noqa: PLR0913
    state_root: Path | None,
    workflow_id: str,
    main_path: Path | None,
    tasks_dir: Path | None,
    output_dir: Path | None,
    force: bool,
    timeout_seconds: float | None,
) -> None:
    """Generate one draft per task plus the main issue, reusing earlier output when possible."""

    if main_path is None and tasks_dir is None:
        raise click.UsageError("Pass --main, --tasks-dir, or both.")
    _finish(
        CONTROLLER.generate(
            GenerateCommand(
                state_root=state_root,
                workflow_id=workflow_id,
                main_path=main_path,
                tasks_dir=tasks_dir,
                output_dir=output_dir,
                force=force,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )


@issue_forge.command("status")
@click.option("--state-root", type=click.Path(path_type=Path), default=None, help="State dir.")
@click.option("--workflow-id", required=True, help="Workflow identifier.")
def status(state_root: Path | None, workflow_id: str) -> None:
    """Show the generation record of a workflow."""

    _finish(CONTROLLER.status(WorkflowCommand(state_root=state_root, workflow_id=workflow_id)))


@issue_forge.command("reset")
@click.option("--state-root", type=click.Path(path_type=Path), default=None, help="State dir.")
@click.option("--workflow-id", required=True, help="Workflow identifier.")
def reset(state_root: Path | None, workflow_id: str) -> None:
    """Delete the generation record and drafts of a workflow."""

    _finish(CONTROLLER.reset(WorkflowCommand(state_root=state_root, workflow_id=workflow_id)))


def _finish(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(result.error)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    issue_forge()
