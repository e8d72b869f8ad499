"""Thin wrapper around the git command line for the upstream checkout."""
import os
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from src.logging_config import get_logger

logger = get_logger()


@dataclass
class GitResult:
    ok: bool
    message: str = ""


class GitError(Exception):
    """A git command exited with a non-zero status."""


class GitClient:
    """Runs git commands against one working tree. Nothing is retried."""

    def __init__(self, repo_path: str, git_executable: str = "git"):
        self.repo_path = repo_path
        self.git_executable = git_executable

    def _run(self, *args: str, cwd: Optional[str] = None) -> str:
        try:
            result = subprocess.run(
                [self.git_executable, *args],
                cwd=cwd or self.repo_path,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=True
            )
        except subprocess.CalledProcessError as git_exc:
            raise GitError((git_exc.stderr or str(git_exc)).strip()) from git_exc
        except OSError as os_exc:
            raise GitError(f"could not run {self.git_executable}: {os_exc}") from os_exc
        return result.stdout

    def is_repo(self) -> bool:
        if not os.path.isdir(self.repo_path):
            return False
        try:
            self._run("rev-parse", "--git-dir")
            return True
        except GitError:
            return False

    def clone(self, url: str, depth: Optional[int] = 1, branch: Optional[str] = None) -> GitResult:
        """Clone ``url`` into the client's repository path."""
        args = ["clone", url, self.repo_path]
        if depth:
            args += ["--depth", str(depth)]
        if branch:
            args += ["--branch", branch]
        parent = os.path.dirname(os.path.abspath(self.repo_path)) or None
        try:
            self._run(*args, cwd=parent)
        except GitError as exc:
            logger.error("Clone failed: %s", exc)
            return GitResult(False, str(exc))
        logger.info("Repository cloned to: %s", self.repo_path)
        return GitResult(True, self.repo_path)

    def current_branch(self) -> Optional[str]:
        try:
            return self._run("rev-parse", "--abbrev-ref", "HEAD").strip()
        except GitError:
            return None

    def update(self, branch: Optional[str] = None) -> GitResult:
        """Fetch and hard-reset to the upstream branch."""
        current = branch or self.current_branch() or "main"
        try:
            remote_branch = self._run(
                "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"
            ).strip()
        except GitError:
            remote_branch = f"origin/{current}"

        try:
            self._run("fetch", "origin")
            self._run("reset", "--hard", remote_branch)
        except GitError as exc:
            logger.error("Update failed: %s", exc)
            return GitResult(False, str(exc))
        logger.info("Source updated to %s", remote_branch)
        return GitResult(True, remote_branch)

    def clean(self) -> GitResult:
        """Restore the working tree to HEAD and remove untracked files."""
        try:
            self._run("restore", "--worktree", "--source=HEAD", "--", ".")
            self._run("clean", "-fd")
        except GitError as exc:
            logger.error("Restore failed: %s", exc)
            return GitResult(False, str(exc))
        logger.info("Source restored to a clean state")
        return GitResult(True)

    def _to_paths(self, output: str) -> List[str]:
        return [os.path.join(self.repo_path, *line.strip().split("/"))
                for line in output.splitlines() if line.strip()]

    def changed_since(self, revision: str) -> List[str]:
        """Absolute paths of files changed between ``revision`` and HEAD."""
        return self._to_paths(self._run("diff", "--name-only", revision, "HEAD"))

    def uncommitted_changes(self) -> List[str]:
        """Absolute paths of modified (staged or not) and untracked files."""
        changed = self._to_paths(self._run("diff", "--name-only", "HEAD"))
        untracked = self._to_paths(self._run("ls-files", "--others", "--exclude-standard"))
        return list(dict.fromkeys(changed + untracked))

    def local_commit(self, short: bool = True) -> Optional[str]:
        args = ["rev-parse", "--short", "HEAD"] if short else ["rev-parse", "HEAD"]
        try:
            return self._run(*args).strip()
        except GitError:
            return None

    def remote_commit(self, branch: Optional[str] = None) -> Optional[str]:
        branch = branch or self.current_branch() or "main"
        try:
            output = self._run("ls-remote", "origin", f"refs/heads/{branch}")
        except GitError as exc:
            logger.warning("Could not query remote commit: %s", exc)
            return None
        return output.split()[0] if output.strip() else None

    def update_available(self, branch: Optional[str] = None) -> bool:
        local = self.local_commit(short=False)
        remote = self.remote_commit(branch)
        return bool(local and remote and local != remote)
