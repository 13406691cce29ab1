"""Git workspace: stage, commit and push through the git CLI."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from pipeline_chaos.errors import InjectionError

logger = logging.getLogger(__name__)


class GitWorkspace:
    """A local clone whose pushes trigger the CI pipeline.

    Args:
        root: Working tree of the clone.
        remote: Remote to push to.
        branch: Default branch to publish.
        timeout_s: Per-command timeout; a hung push is a failed trigger.
    """

    def __init__(
        self,
        root: str | Path,
        remote: str = "origin",
        branch: str = "main",
        timeout_s: float = 60.0,
        git: str = "git",
    ):
        self.root = Path(root)
        self.remote = remote
        self.branch = branch
        self.timeout_s = timeout_s
        self._git_bin = git

    def _git(self, *args: str) -> str:
        cmd = [self._git_bin, "-C", str(self.root), *args]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise InjectionError(f"git {args[0]} timed out after {self.timeout_s:.0f}s") from e
        except OSError as e:
            raise InjectionError(f"could not run git: {e}") from e
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip()
            raise InjectionError(f"git {args[0]} failed ({proc.returncode}): {detail}")
        return proc.stdout.strip()

    def commit(self, paths: list[str], message: str, allow_empty: bool = False) -> str:
        if paths:
            self._git("add", "--", *paths)
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        self._git(*args)
        return self._git("rev-parse", "HEAD")

    def publish(self, branch: str | None = None) -> None:
        branch = branch or self.branch
        logger.debug("pushing %s to %s", branch, self.remote)
        self._git("push", self.remote, branch)

    def discard(self, paths: list[str], revision: str | None = None) -> None:
        """Undo an unpublished commit and unstage `paths`, keeping the working tree."""
        if revision is not None:
            self._git("reset", "-q", "--mixed", f"{revision}~1")
        elif paths:
            self._git("reset", "-q", "--", *paths)
