"""Interactive operator selection for the CLI."""

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from nugetbump.models import Repository, ResolvedUpdate
from nugetbump.update_set import UpdateSet

HELP_TEXT = "[grey50](numbers like 1,3-5 · [blue]all[/] · [blue]none[/] · [blue]q[/] to abort)[/]"


def parse_selection(answer: str, count: int) -> list[int] | None:
    """Turn an answer such as ``1,3-5`` into zero-based indices.

    Returns:
        Sorted indices, or None when the operator asked to abort

    Raises:
        ValueError: if the answer cannot be understood
    """
    answer = answer.strip().lower()
    if answer in ("q", "quit", "abort"):
        return None
    if answer in ("a", "all", "*"):
        return list(range(count))
    if answer in ("", "n", "none"):
        return []

    chosen: set[int] = set()
    for part in answer.replace(" ", "").split(","):
        if not part:
            continue
        if "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = int(start_text), int(end_text)
        else:
            start = end = int(part)
        if start < 1 or end > count or start > end:
            raise ValueError(f"{part} is outside 1-{count}")
        chosen.update(range(start - 1, end))
    return sorted(chosen)


def _ask(console: Console, prompt: str, count: int, default: str) -> list[int] | None:
    while True:
        answer = Prompt.ask(prompt, console=console, default=default)
        try:
            return parse_selection(answer, count)
        except ValueError as e:
            console.print(f"[red]{e}[/]")


def repository_prompt(console: Console):
    """Build a repository selector that asks the operator."""

    def select(repositories: list[Repository]) -> list[Repository]:
        if not repositories:
            return []
        table = Table(title="Repositories", show_lines=False)
        table.add_column("#", justify="right")
        table.add_column("Repository")
        table.add_column("Default branch")
        for i, repo in enumerate(repositories, start=1):
            table.add_row(str(i), repo.name, repo.default_branch_name or "-")
        console.print(table)
        console.print(HELP_TEXT)

        indices = _ask(console, "Select the repositories to check", len(repositories), "all")
        return [repositories[i] for i in indices or []]

    return select


def update_prompt(console: Console):
    """Build an update selector that asks the operator."""

    def select(repository: Repository, update_set: UpdateSet) -> list[ResolvedUpdate] | None:
        updates = update_set.updates
        console.print(f"[bold yellow]Updates found in {repository.name}![/]")
        table = Table(show_lines=False)
        table.add_column("#", justify="right")
        table.add_column("Package")
        table.add_column("Current")
        table.add_column("Latest", style="green")
        table.add_column("Change")
        for i, update in enumerate(updates, start=1):
            table.add_row(str(i), update.id, update.current_version, update.latest_version, update.semver_delta)
        console.print(table)
        console.print(HELP_TEXT)

        indices = _ask(console, "Select the packages to update", len(updates), "all")
        if indices is None:
            return None
        return [updates[i] for i in indices]

    return select
