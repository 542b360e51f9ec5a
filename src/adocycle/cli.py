"""adocycle command-line entry point.

Commands:
- start <id>: create the work item branch, link it, set state Committed
- finish <id>: create or reuse the pull request, link it, set state In Review
- repo set|show|clear: manage the default repository

Each command resolves credentials once, then runs its workflow through
AuthRetryWrapper so that a rejected PAT can be replaced interactively
one time.
"""

import asyncio
import logging
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional, Union

import typer
from pydantic import ValidationError as SchemaValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from src.adocycle.ado.client import AzureDevOpsClient, build_work_item_url
from src.adocycle.auth.credentials import Credentials, reacquire_token, resolve_credentials
from src.adocycle.auth.prompt import CredentialPrompter, TyperPrompter, is_interactive_terminal
from src.adocycle.auth.retry import AuthRetryWrapper
from src.adocycle.config import (
    AdoCycleSettings,
    get_config_file_path,
    get_settings,
    merge_and_write_stored_config,
    read_stored_config,
    write_stored_config,
)
from src.adocycle.errors import AdoCycleError, ValidationError
from src.adocycle.repo.local_git import LocalGit
from src.adocycle.repo.target import RepoMode, is_likely_url, parse_repo_identifier
from src.adocycle.workflow.branch_policy import clone_directory_from_branch, short_branch_name
from src.adocycle.workflow.finish import FinishOrchestrator, FinishOutcome, FinishRequest
from src.adocycle.workflow.results import ExecutionResult, PartialFailure
from src.adocycle.workflow.start import COMMITTED_STATE, StartOrchestrator, StartOutcome, StartRequest

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

app = typer.Typer(
    name="adocycle",
    help="Azure DevOps work item lifecycle: branch on start, pull request on finish.",
    no_args_is_help=True,
)
repo_app = typer.Typer(
    help="Manage the default repository path or Azure Repos URL.",
    no_args_is_help=True,
)
app.add_typer(repo_app, name="repo")

console = Console()
err_console = Console(stderr=True)


def _load_settings() -> AdoCycleSettings:
    try:
        return get_settings()
    except SchemaValidationError as exc:
        raise ValidationError(f"Invalid ADO_* environment configuration: {exc}") from exc


def configure_logging(verbose: bool, default_level: str = "WARNING") -> None:
    level = logging.DEBUG if verbose else getattr(logging, default_level, logging.WARNING)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


@contextmanager
def _command_errors() -> Iterator[None]:
    """Map failures to a message and exit code at the command boundary."""
    try:
        yield
    except (typer.Exit, typer.Abort):
        raise
    except AdoCycleError as e:
        err_console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(code=e.exit_code) from e
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=130)
    except Exception as e:
        logger.debug("Unhandled exception", exc_info=True)
        err_console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1) from e


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    with _command_errors():
        settings = _load_settings()
    configure_logging(verbose, settings.log_level)


def _create_client(credentials: Credentials) -> AzureDevOpsClient:
    return AzureDevOpsClient(credentials.organization_url, credentials.token)


def _retry_wrapper(prompter: CredentialPrompter) -> AuthRetryWrapper:
    def announce(error: Exception) -> None:
        err_console.print(
            "[yellow]Azure DevOps authentication failed (token may be expired).[/yellow]"
        )

    return AuthRetryWrapper(
        reacquire=lambda credentials: reacquire_token(credentials, prompter),
        is_interactive=is_interactive_terminal,
        on_retry=announce,
    )


def _require_work_item_id(work_item_id: int) -> None:
    if work_item_id <= 0:
        raise ValidationError(
            f"Work item ID must be a positive integer. Received: {work_item_id}"
        )


def _resolve_command_credentials(
    org: Optional[str],
    reauth: bool,
    prompter: CredentialPrompter,
) -> Credentials:
    return resolve_credentials(
        org,
        reauth,
        _load_settings(),
        prompter,
        is_interactive_terminal(),
    )


async def _run_start(
    credentials: Credentials,
    prompter: CredentialPrompter,
    request: StartRequest,
) -> ExecutionResult[StartOutcome]:
    local_git = LocalGit()

    async def attempt(current: Credentials) -> ExecutionResult[StartOutcome]:
        async with _create_client(current) as client:
            orchestrator = StartOrchestrator(client, client, local_git)
            return await orchestrator.run(request)

    return await _retry_wrapper(prompter).run(attempt, credentials)


async def _run_finish(
    credentials: Credentials,
    prompter: CredentialPrompter,
    request: FinishRequest,
) -> ExecutionResult[FinishOutcome]:
    local_git = LocalGit()

    async def attempt(current: Credentials) -> ExecutionResult[FinishOutcome]:
        async with _create_client(current) as client:
            orchestrator = FinishOrchestrator(client, client, local_git)
            return await orchestrator.run(request)

    return await _retry_wrapper(prompter).run(attempt, credentials)


def build_next_git_commands(outcome: StartOutcome) -> List[str]:
    """Commands that get the new branch into a working tree."""
    branch = outcome.branch_name
    if outcome.target.mode is RepoMode.PATH and outcome.target.local_path is not None:
        path = outcome.target.local_path
        return [
            f'git -C "{path}" fetch origin',
            f'git -C "{path}" checkout -b "{branch}" --track "origin/{branch}"',
        ]

    command = f'git clone --single-branch --branch {branch} "{outcome.clone_url}"'
    directory = clone_directory_from_branch(branch)
    if directory:
        command += f' "{directory}"'
    return [command]


def _print_partial_failure(result: PartialFailure, follow_up: str, work_item_url: str) -> None:
    error = result.to_error()
    err_console.print(
        Panel(
            f"{escape(error.message)}\n\n"
            f"Created: {escape(error.artifact)}\n"
            f"Work item: {escape(work_item_url)}\n"
            f"Next step: {escape(follow_up)}",
            title="Partially completed",
            border_style="yellow",
            style="yellow",
        )
    )


def _print_next_git_commands(outcome: StartOutcome) -> None:
    console.print(
        Panel(
            "\n".join(escape(line) for line in build_next_git_commands(outcome)),
            title="Next git commands",
            expand=False,
        )
    )


def _work_item_url(organization_url: str, outcome: Union[StartOutcome, FinishOutcome]) -> str:
    return build_work_item_url(organization_url, outcome.work_item.project, outcome.work_item.id)


def _print_start(outcome: StartOutcome, organization_url: str) -> None:
    console.print(
        f"Started work item {outcome.work_item.id}: {escape(outcome.work_item.title)}"
    )
    console.print(f"Work item URL: {escape(_work_item_url(organization_url, outcome))}")
    console.print(f"Branch: {escape(outcome.branch_name)}")
    console.print(f"Repository: {escape(outcome.repository.display_path)}")
    console.print(f"Work item state: {escape(outcome.state)}")
    if outcome.link.warning:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(outcome.link.warning)}")

    _print_next_git_commands(outcome)


def _print_finish(outcome: FinishOutcome, organization_url: str) -> None:
    pull_request = outcome.pull_request
    console.print(
        f"Finished work item {outcome.work_item.id}: {escape(outcome.work_item.title)}"
    )
    console.print(f"Work item URL: {escape(_work_item_url(organization_url, outcome))}")
    console.print(f"Repository: {escape(outcome.repository.display_path)}")
    console.print(f"Source branch: {escape(short_branch_name(outcome.source_ref))}")
    console.print(f"Target branch: {escape(short_branch_name(outcome.target_ref))}")
    console.print(f"Pull request: #{pull_request.id} ({outcome.action.value})")
    console.print(f"Pull request URL: {escape(pull_request.url)}")
    console.print(f"Draft: {'yes' if pull_request.is_draft else 'no'}")
    console.print(f"Work item state: {escape(outcome.state)}")

    if outcome.source_was_pushed and outcome.target.local_path is not None:
        console.print(
            f"Source branch was pushed to origin from {escape(str(outcome.target.local_path))}."
        )
    if outcome.link.warning:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(outcome.link.warning)}")

    console.print(
        Panel(
            f"Open PR: {escape(pull_request.url)}\n"
            "Add reviewers and complete your team review checklist.",
            title="Next actions",
            expand=False,
        )
    )


@app.command()
def start(
    work_item_id: int = typer.Argument(..., help="Work item ID."),
    org: Optional[str] = typer.Option(
        None, "--org", help="Organization name or URL, e.g. myorg or https://dev.azure.com/myorg."
    ),
    repo: Optional[str] = typer.Option(
        None, "--repo", help="Repository path or Azure Repos URL."
    ),
    base: Optional[str] = typer.Option(
        None, "--base", help="Base branch name or ref (default: repository default branch)."
    ),
    reauth: bool = typer.Option(False, "--reauth", help="Prompt for a new PAT before executing."),
) -> None:
    """Start work on a work item: create branch, link it, and set state to Committed."""
    with _command_errors():
        _require_work_item_id(work_item_id)
        prompter = TyperPrompter()
        credentials = _resolve_command_credentials(org, reauth, prompter)
        stored = read_stored_config(credentials.config_path)
        request = StartRequest(
            work_item_id=work_item_id,
            organization_url=credentials.organization_url,
            repo=repo,
            default_repo=stored.default_repo,
            base=base,
        )
        result = asyncio.run(_run_start(credentials, prompter, request))

    if isinstance(result, PartialFailure):
        _print_partial_failure(
            result,
            f"Set work item {work_item_id} state to '{COMMITTED_STATE}' manually.",
            _work_item_url(credentials.organization_url, result.payload),
        )
        _print_next_git_commands(result.payload)
        return
    _print_start(result.payload, credentials.organization_url)


@app.command()
def finish(
    work_item_id: int = typer.Argument(..., help="Work item ID."),
    org: Optional[str] = typer.Option(
        None, "--org", help="Organization name or URL, e.g. myorg or https://dev.azure.com/myorg."
    ),
    repo: Optional[str] = typer.Option(
        None, "--repo", help="Repository path or Azure Repos URL."
    ),
    target: Optional[str] = typer.Option(
        None, "--target", help="Target branch name or ref (default: repository default branch)."
    ),
    draft: bool = typer.Option(
        False, "--draft", help="Create the pull request as draft when a new one is created."
    ),
    reauth: bool = typer.Option(False, "--reauth", help="Prompt for a new PAT before executing."),
) -> None:
    """Finish work on a work item: prepare PR handoff and set state to In Review."""
    with _command_errors():
        _require_work_item_id(work_item_id)
        prompter = TyperPrompter()
        credentials = _resolve_command_credentials(org, reauth, prompter)
        stored = read_stored_config(credentials.config_path)
        request = FinishRequest(
            work_item_id=work_item_id,
            organization_url=credentials.organization_url,
            repo=repo,
            default_repo=stored.default_repo,
            target=target,
            draft=draft,
        )
        result = asyncio.run(_run_finish(credentials, prompter, request))

    if isinstance(result, PartialFailure):
        _print_partial_failure(
            result,
            f"Set work item {work_item_id} state to 'In Review' manually.",
            _work_item_url(credentials.organization_url, result.payload),
        )
        return
    _print_finish(result.payload, credentials.organization_url)


@repo_app.command("set")
def repo_set(
    path_or_url: str = typer.Argument(..., help="Local git repository path or Azure Repos URL."),
) -> None:
    """Set the default repository path or Azure Repos URL."""
    with _command_errors():
        value = path_or_url.strip()
        if not value:
            raise ValidationError("Repository value cannot be empty.")
        # Paths are validated when a command uses them
        if is_likely_url(value):
            parse_repo_identifier(value)

        config_path = get_config_file_path(_load_settings())
        merge_and_write_stored_config({"default_repo": value}, config_path)

    console.print(f"Default repository saved in {escape(str(config_path))}")
    console.print(f"Default repo: {escape(value)}")


@repo_app.command("show")
def repo_show() -> None:
    """Show the default repository."""
    with _command_errors():
        config = read_stored_config(get_config_file_path(_load_settings()))

    if not config.default_repo:
        console.print("No default repository is configured.")
        return
    console.print(escape(config.default_repo))


@repo_app.command("clear")
def repo_clear() -> None:
    """Clear the default repository."""
    with _command_errors():
        config_path = get_config_file_path(_load_settings())
        config = read_stored_config(config_path)
        if not config.default_repo:
            console.print("Default repository is already empty.")
            return
        write_stored_config(config.model_copy(update={"default_repo": None}), config_path)

    console.print("Default repository cleared.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
