"""GitHub issue creation through the gh CLI."""

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path


class GitHubError(Exception):
    """Raised when a gh command fails."""


@dataclass
class Issue:
    number: int
    url: str


_ISSUE_URL = re.compile(r"https://\S+/issues/(\d+)")


def run_gh(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a gh command and return stdout. Raises GitHubError on failure."""
    cmd = ["gh"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise GitHubError(f"gh {' '.join(args[:2])} failed: {e.stderr.strip()}") from e
    except OSError as e:
        raise GitHubError(f"gh {' '.join(args[:2])} failed: {e}") from e


class GitHubIssues:
    """Creates issues in the repository at ``cwd``."""

    def __init__(self, cwd: str | Path | None = None):
        self.cwd = cwd

    def create_issue(self, title: str, body: str, labels: list[str]) -> Issue:
        args = ["issue", "create", "--title", title, "--body", body]
        for label in labels:
            args += ["--label", label]
        output = run_gh(args, cwd=self.cwd)
        match = _ISSUE_URL.search(output)
        if not match:
            raise GitHubError(f"could not parse issue URL from gh output: {output!r}")
        return Issue(number=int(match.group(1)), url=match.group(0))
