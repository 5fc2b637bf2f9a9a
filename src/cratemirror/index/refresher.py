"""
Index refresh via git.

The index is a git repository. Refreshing clones it on first use and
afterwards hard-resets the checkout to the upstream branch, which also
discards any earlier download-URL rewrite. Callers must therefore rewrite
the config only after a refresh, never before.
"""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING, Protocol

from cratemirror.errors import IndexRefreshError
from cratemirror.index.reader import CONFIG_FILENAME

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_INDEX_REMOTE = "https://github.com/rust-lang/crates.io-index"
DEFAULT_INDEX_BRANCH = "master"
COMMIT_AUTHOR_NAME = "crate-mirror"
COMMIT_AUTHOR_EMAIL = "no-email"


class IndexRefresher(Protocol):
    """Brings the local index up to date with upstream."""

    def refresh(self, index_dir: Path) -> None: ...

    def commit_config(self, index_dir: Path, message: str) -> bool: ...


class GitIndexRefresher:
    """IndexRefresher backed by the ``git`` command line tool."""

    def __init__(
        self,
        remote_url: str = DEFAULT_INDEX_REMOTE,
        branch: str = DEFAULT_INDEX_BRANCH,
        timeout_s: float = 1800.0,
    ) -> None:
        """
        Initialize refresher.

        Args:
            remote_url: Upstream index repository.
            branch: Upstream branch to track.
            timeout_s: Timeout for each git invocation (clones are slow).
        """
        self._remote_url = remote_url
        self._branch = branch
        self._timeout_s = timeout_s

    def _run(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        cmd = ["git", *args]
        logger.debug("Running git", extra={"command": " ".join(cmd)})
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=check,
                timeout=self._timeout_s,
            )
        except subprocess.CalledProcessError as e:
            msg = f"git {args[0] if args else ''} failed ({e.returncode}): {e.stderr.strip()}"
            raise IndexRefreshError(msg) from e
        except subprocess.TimeoutExpired as e:
            msg = f"git timed out after {self._timeout_s}s: {' '.join(cmd)}"
            raise IndexRefreshError(msg) from e
        except FileNotFoundError as e:
            msg = "git executable not found"
            raise IndexRefreshError(msg) from e

    def refresh(self, index_dir: Path) -> None:
        """Clone the index, or fetch and hard-reset an existing checkout.

        Raises:
            IndexRefreshError: If any git operation fails.
        """
        if not index_dir.exists():
            logger.info("Cloning index", extra={"remote": self._remote_url, "dest": str(index_dir)})
            self._run(["clone", "--branch", self._branch, self._remote_url, str(index_dir)])
            logger.info("Done cloning index")
            return

        if not (index_dir / ".git").exists():
            msg = f"Index directory exists but is not a git checkout: {index_dir}"
            raise IndexRefreshError(msg)

        logger.info("Updating index", extra={"dest": str(index_dir)})
        self._run(["-C", str(index_dir), "fetch", "origin"])
        self._run(["-C", str(index_dir), "reset", "--hard", f"origin/{self._branch}"])
        logger.info("Done updating index")

    def commit_config(self, index_dir: Path, message: str) -> bool:
        """
        Commit ``config.json`` so git clients of the mirror see the change.

        Returns:
            True if a commit was made, False if there was nothing to commit.

        Raises:
            IndexRefreshError: If staging or committing fails.
        """
        self._run(["-C", str(index_dir), "add", CONFIG_FILENAME])
        staged = self._run(
            ["-C", str(index_dir), "diff", "--cached", "--quiet", "--", CONFIG_FILENAME],
            check=False,
        )
        if staged.returncode == 0:
            return False
        self._run(
            [
                "-C",
                str(index_dir),
                "-c",
                f"user.name={COMMIT_AUTHOR_NAME}",
                "-c",
                f"user.email={COMMIT_AUTHOR_EMAIL}",
                "commit",
                "-m",
                message,
                "--",
                CONFIG_FILENAME,
            ]
        )
        logger.info("Committed registry config", extra={"dest": str(index_dir)})
        return True
