"""CLI application for nugetbump."""

import asyncio
import difflib
import json
import logging

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from apps.cli.prompts import repository_prompt, update_prompt
from nugetbump.config import Settings
from nugetbump.errors import HostingServiceError
from nugetbump.models import ChangeSet, Repository
from nugetbump.parse_manifest import decode_document
from nugetbump.pipeline import RepositoryOutcome, RepositoryReport, run, select_all

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool, quiet: bool = False, log_file: str | None = None) -> None:
    """Configure the root logger for a CLI run.

    Handlers added by a previous call are replaced, so repeated invocations
    (tests, embedding) do not duplicate output.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if log_file else level)
    for handler in list(root.handlers):
        if getattr(handler, "_nugetbump", False):
            root.removeHandler(handler)
            handler.close()

    rich_handler = RichHandler(console=err_console, show_time=False, show_path=False, rich_tracebacks=True)
    rich_handler.setLevel(level)
    rich_handler._nugetbump = True
    root.addHandler(rich_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        file_handler._nugetbump = True
        root.addHandler(file_handler)

    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def format_diff_output(change_set: ChangeSet) -> str:
    """Format unified diffs of every file in a change set."""
    chunks = []
    for change in change_set:
        before = decode_document(change.original, change.path)[0].splitlines(keepends=True)
        after = decode_document(change.new_content, change.path)[0].splitlines(keepends=True)
        chunks.append("".join(difflib.unified_diff(before, after, f"a{change.path}", f"b{change.path}")))
    return "\n".join(chunks)


def format_json_output(reports: list[RepositoryReport]) -> str:
    """Format JSON output."""
    return json.dumps({"reports": [report.to_dict() for report in reports]}, indent=2)


def print_summary(reports: list[RepositoryReport]) -> None:
    for report in reports:
        outcome = report.outcome
        if outcome is RepositoryOutcome.PUBLISHED:
            console.print(f"[green]{report.repository}[/]: pull request {report.publication.pull_request_url}")
        elif outcome is RepositoryOutcome.FAILED:
            publication = report.publication
            if publication and publication.failed_stage:
                console.print(
                    f"[red]{report.repository}[/]: failed at {publication.failed_stage.value}"
                    f" (branch: {publication.branch_name or 'not created'}): {publication.error}"
                )
            else:
                console.print(f"[red]{report.repository}[/]: {'; '.join(report.errors)}")
        elif outcome is RepositoryOutcome.DRY_RUN:
            console.print(f"[yellow]{report.repository}[/]: {len(report.change_set)} file(s) would change")
            console.print(format_diff_output(report.change_set), markup=False, highlight=False, soft_wrap=True)
        elif outcome is RepositoryOutcome.NO_UPDATES:
            console.print(f"{report.repository}: No updates found.")
        else:
            console.print(f"{report.repository}: {outcome.value}")

        for failure in report.failures:
            console.print(f"  [grey50]feed {failure.feed_uri} failed for {failure.package_id}: {failure.reason}[/]")
        for error in report.errors:
            if outcome is not RepositoryOutcome.FAILED:
                console.print(f"  [grey50]{error}[/]")


def _named_repositories(names: list[str]):
    wanted = {name.lower() for name in names}

    def select(repositories: list[Repository]) -> list[Repository]:
        chosen = [repo for repo in repositories if repo.name.lower() in wanted]
        missing = wanted - {repo.name.lower() for repo in chosen}
        for name in sorted(missing):
            logging.getLogger(__name__).warning("Repository %s not found", name)
        return chosen

    return select


app = typer.Typer(
    name="nugetbump",
    help="nugetbump - Propose NuGet dependency updates as Azure DevOps pull requests",
    add_completion=False,
)


@app.command()
def update(
    org_url: str = typer.Option(..., "--org-url", envvar="AZURE_DEVOPS_ORG_URL", help="Organization URL, e.g. https://dev.azure.com/contoso"),
    project: str = typer.Option(..., "--project", envvar="AZURE_DEVOPS_PROJECT", help="Project name"),
    token: str = typer.Option(..., "--token", envvar="AZURE_DEVOPS_PAT", help="Personal access token", show_default=False),
    repos: list[str] | None = typer.Option(None, "--repo", "-r", help="Repository to check (repeatable); skips the repository prompt"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Apply every update found without asking"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without publishing"),
    branch_prefix: str = typer.Option("dependency", "--branch-prefix", help="Prefix of the update branch"),
    timeout: float = typer.Option(30.0, "--timeout", help="Feed query timeout in seconds"),
    max_concurrency: int = typer.Option(6, "--max-concurrency", help="Concurrent feed queries"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Also write logs to this file"),
) -> None:
    """nugetbump - Check repositories for NuGet updates and open pull requests."""

    if format_type not in ("text", "json"):
        console.print(f"Error: Unsupported format: {format_type}", style="red")
        raise typer.Exit(1)

    configure_logging(verbose, quiet=format_type == "json", log_file=log_file)

    try:
        settings = Settings(
            organization_url=org_url,
            project=project,
            token=token,
            branch_prefix=branch_prefix,
            feed_timeout=timeout,
            max_concurrency=max_concurrency,
            dry_run=dry_run,
        )
    except ValidationError as e:
        console.print(f"Error: invalid configuration: {e}", style="red")
        raise typer.Exit(1)

    select_repositories = _named_repositories(repos) if repos else repository_prompt(console)
    select_updates = select_all if yes else update_prompt(console)

    try:
        reports = asyncio.run(run(settings, select_repositories, select_updates))
    except HostingServiceError as e:
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("Aborted.", style="yellow")
        raise typer.Exit(130)

    if format_type == "json":
        typer.echo(format_json_output(reports))
    else:
        print_summary(reports)


if __name__ == "__main__":
    app()
