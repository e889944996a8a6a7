"""Best-effort local checkout cache.

Used when an analysis request names changed paths but carries no inline
contents. Repositories are cloned once under the cache directory and
fetched on later use; file contents are read at the analysed commit with
``git show``. Every git call runs under a timeout and a timed-out process
is killed and reported as ``TransientInfraError``.
"""

import asyncio
import re
from pathlib import Path

import structlog

from commitguard.config import Settings, get_settings
from commitguard.exceptions import TransientInfraError, ValidationError
from commitguard.models import FileChange

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_COMMIT_SHA = re.compile(r"^[0-9a-fA-F]{7,64}$")


def sanitize_repository_name(name: str) -> str:
    """Directory-safe name for a repository id."""
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned or "repository"


class RepositoryCheckout:
    """Clone cache rooted at ``base_path``."""

    def __init__(
        self,
        base_path: str | Path,
        clone_timeout: float = 300.0,
        checkout_timeout: float = 60.0,
    ):
        self.base_path = Path(base_path)
        self.clone_timeout = clone_timeout
        self.checkout_timeout = checkout_timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RepositoryCheckout":
        settings = settings or get_settings()
        return cls(
            base_path=settings.checkout_base_path,
            clone_timeout=settings.clone_timeout_seconds,
            checkout_timeout=settings.checkout_timeout_seconds,
        )

    async def _run_git_command(
        self,
        args: list[str],
        timeout: float,
        cwd: Path | None = None,
    ) -> tuple[str, str, int]:
        """Run a git command asynchronously.

        Args:
            args: Git command arguments
            timeout: Command timeout in seconds
            cwd: Working directory

        Returns:
            Tuple of (stdout, stderr, return_code)

        Raises:
            TransientInfraError: If the command times out or git cannot be started
        """
        try:
            process = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransientInfraError(f"Could not start git: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error("Git command timed out", command=" ".join(args[:2]), timeout=timeout)
            raise TransientInfraError(
                f"git {args[0]} timed out after {timeout:.0f}s",
                details={"command": args[0], "timeout": timeout},
            ) from None

        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode or 0,
        )

    async def ensure_repository(self, repository_id: str, clone_url: str) -> Path:
        """Clone the repository if absent, otherwise fetch new commits."""
        repo_path = self.base_path / sanitize_repository_name(repository_id)

        if (repo_path / ".git").exists():
            _, stderr, code = await self._run_git_command(
                ["fetch", "--quiet", "origin"], timeout=self.clone_timeout, cwd=repo_path
            )
            if code != 0:
                raise TransientInfraError(f"git fetch failed: {stderr.strip()[:200]}")
            return repo_path

        repo_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning repository", repository_id=repository_id, path=str(repo_path))
        _, stderr, code = await self._run_git_command(
            ["clone", "--quiet", "--no-checkout", "--", clone_url, str(repo_path)],
            timeout=self.clone_timeout,
        )
        if code != 0:
            raise TransientInfraError(f"git clone failed: {stderr.strip()[:200]}")
        return repo_path

    async def read_files(
        self,
        repository_id: str,
        clone_url: str,
        commit_id: str,
        paths: list[str],
    ) -> list[FileChange]:
        """Contents of ``paths`` as of ``commit_id``.

        Paths that do not exist at that commit are skipped.

        Raises:
            ValidationError: If ``commit_id`` is not a hex object name
        """
        if not _COMMIT_SHA.fullmatch(commit_id):
            raise ValidationError(f"Invalid commit id: {commit_id!r}")

        repo_path = await self.ensure_repository(repository_id, clone_url)

        changes = []
        for path in paths:
            stdout, stderr, code = await self._run_git_command(
                ["show", f"{commit_id}:{path}"],
                timeout=self.checkout_timeout,
                cwd=repo_path,
            )
            if code != 0:
                logger.debug("File not readable at commit", path=path, commit_id=commit_id, error=stderr.strip()[:120])
                continue
            changes.append(FileChange(path=path, content=stdout))
        return changes
