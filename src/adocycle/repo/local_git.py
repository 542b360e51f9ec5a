"""Local git working tree operations.

LocalGit implements LocalGitPort by running the git executable through
asyncio subprocesses so that a command never blocks the event loop.
Failures surface as LocalGitError carrying git's stderr.
"""

import asyncio
import logging
from pathlib import Path

from src.adocycle.errors import LocalGitError, ValidationError

logger = logging.getLogger(__name__)

GIT_COMMAND_TIMEOUT_SECONDS = 120


class LocalGit:
    """LocalGitPort implementation backed by the git CLI.

    Attributes:
        executable: Name or path of the git binary.
        timeout: Seconds to wait for a single git command.
    """

    def __init__(
        self,
        executable: str = "git",
        timeout: float = GIT_COMMAND_TIMEOUT_SECONDS,
    ):
        self.executable = executable
        self.timeout = timeout

    async def _run(self, path: Path, *args: str) -> tuple[int, str, str]:
        """Run a git command in ``path`` and capture its output.

        Returns:
            Tuple of (return code, stripped stdout, stripped stderr).

        Raises:
            LocalGitError: If git cannot be executed or times out.
        """
        command = " ".join(("git",) + args)
        logger.debug("Running git", extra={"cwd": str(path), "command": command})

        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                cwd=str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise LocalGitError(
                f"Git command timed out after {self.timeout}s: {command}"
            ) from exc
        except OSError as exc:
            raise LocalGitError(f"Failed to execute git: {exc}") from exc

        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode().strip(),
            stderr.decode().strip(),
        )

    async def _check_output(self, path: Path, *args: str) -> str:
        returncode, stdout, stderr = await self._run(path, *args)
        if returncode != 0:
            raise LocalGitError(
                f"Git command failed: git {' '.join(args)}. {stderr}".rstrip()
            )
        return stdout

    async def is_work_tree(self, path: Path) -> bool:
        returncode, stdout, _ = await self._run(path, "rev-parse", "--is-inside-work-tree")
        return returncode == 0 and stdout.lower() == "true"

    async def origin_remote_url(self, path: Path) -> str:
        """Read the URL of the ``origin`` remote.

        Raises:
            LocalGitError: If there is no origin remote or it is empty.
        """
        remote_url = await self._check_output(path, "remote", "get-url", "origin")
        if not remote_url:
            raise LocalGitError(
                f"Git origin remote is empty for repository path: {path}"
            )
        return remote_url

    async def current_branch(self, path: Path) -> str:
        """Name of the checked-out branch.

        Raises:
            ValidationError: If HEAD is detached.
        """
        branch = await self._check_output(path, "rev-parse", "--abbrev-ref", "HEAD")
        if not branch or branch == "HEAD":
            raise ValidationError(
                f"Repository at {path} is in detached HEAD state. "
                "Checkout the work item branch and rerun."
            )
        return branch

    async def has_tracking_branch(self, path: Path, branch: str) -> bool:
        returncode, _, _ = await self._run(
            path,
            "rev-parse",
            "--verify",
            "--quiet",
            f"refs/remotes/origin/{branch}",
        )
        return returncode == 0

    async def ahead_count(self, path: Path, branch: str) -> int:
        """Number of local commits on ``branch`` not yet on origin."""
        output = await self._check_output(
            path, "rev-list", "--count", f"origin/{branch}..{branch}"
        )
        try:
            return int(output)
        except ValueError as exc:
            raise LocalGitError(
                f"Unexpected output from git rev-list: {output!r}"
            ) from exc

    async def push(self, path: Path, branch: str) -> None:
        await self._check_output(path, "push", "-u", "origin", branch)
        logger.info(
            "Pushed branch to origin",
            extra={"cwd": str(path), "branch": branch},
        )
