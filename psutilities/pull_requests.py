"""
Cross-platform pull request approve/complete.

Looks at a git remote URL, works out whether the repository lives on
GitHub or Azure DevOps, and hands the call to the matching client.
"""

from __future__ import annotations

import logging
import re
import subprocess
from urllib.parse import unquote

from .config import load_settings
from .devops_client import DevOpsClient
from .errors import ParameterValidationError, UnsupportedRemoteError
from .github_client import GitHubClient
from .models import RemoteInfo

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Remote URL parsing
# ---------------------------------------------------------------------------

_REMOTE_PATTERNS = [
    # https://github.com/owner/repo(.git)
    ("GitHub", re.compile(
        r"^https?://(?:[^@/]+@)?github\.com/(?P<org>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$", re.I)),
    # git@github.com:owner/repo(.git)
    ("GitHub", re.compile(
        r"^(?:ssh://)?git@github\.com[:/](?P<org>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$", re.I)),
    # https://[user@]dev.azure.com/org/project/_git/repo
    ("AzureDevOps", re.compile(
        r"^https?://(?:[^@/]+@)?dev\.azure\.com/(?P<org>[^/]+)/(?P<project>[^/]+)/_git/(?P<repo>[^/]+?)/?$", re.I)),
    # git@ssh.dev.azure.com:v3/org/project/repo
    ("AzureDevOps", re.compile(
        r"^(?:ssh://)?git@ssh\.dev\.azure\.com[:/]v3/(?P<org>[^/]+)/(?P<project>[^/]+)/(?P<repo>[^/]+?)/?$", re.I)),
    # https://org.visualstudio.com/[DefaultCollection/]project/_git/repo
    ("AzureDevOps", re.compile(
        r"^https?://(?:[^@/]+@)?(?P<org>[^./]+)\.visualstudio\.com/(?:DefaultCollection/)?"
        r"(?P<project>[^/]+)/_git/(?P<repo>[^/]+?)/?$", re.I)),
]


def parse_remote_url(url) -> RemoteInfo:
    """
    Split a git remote URL into platform, organization/owner, project and
    repository.  Percent-encoded segments (``My%20Project``) are decoded.

    Raises:
        UnsupportedRemoteError: if the URL matches no known host layout.
    """
    cleaned = (url or "").strip()
    for platform, pattern in _REMOTE_PATTERNS:
        match = pattern.match(cleaned)
        if match:
            groups = match.groupdict()
            return RemoteInfo(
                platform=platform,
                organization=unquote(groups["org"]),
                project=unquote(groups["project"]) if groups.get("project") else None,
                repository=unquote(groups["repo"]),
                url=cleaned,
            )
    raise UnsupportedRemoteError(cleaned)


def get_remote_url(path=".", remote="origin") -> str:
    """Return the URL of *remote* for the git working copy at *path*."""
    try:
        completed = subprocess.run(
            ["git", "-C", str(path), "remote", "get-url", remote],
            capture_output=True, text=True, check=True,
        )
    except FileNotFoundError as e:
        raise ParameterValidationError("git is not installed or not on PATH.") from e
    except subprocess.CalledProcessError as e:
        raise ParameterValidationError(
            f"Could not read remote '{remote}' in '{path}': {e.stderr.strip() or e}"
        ) from e
    return completed.stdout.strip()


def _resolve_remote(remote_url, path):
    if remote_url is None:
        remote_url = get_remote_url(path)
    info = parse_remote_url(remote_url)
    logger.debug("Remote %s resolved to %s %s/%s",
                 remote_url, info.platform, info.organization, info.repository)
    return info


def _ado_client(info, settings, pat, session):
    return DevOpsClient(
        organization=info.organization,
        project=info.project,
        pat=pat or settings.pat,
        session=session,
        timeout=settings.http_timeout,
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def approve_pull_request(pull_request_id, remote_url=None, path=".", *,
                         pat=None, token=None, body="", settings=None, session=None):
    """
    Approve a pull request on whichever platform hosts the repository.

    Args:
        pull_request_id: PR number (GitHub) or pull request id (Azure DevOps).
        remote_url: Git remote URL; read from *path* when omitted.
        path: Working copy used to look up ``origin``.
        pat: Azure DevOps PAT (falls back to settings).
        token: GitHub token (falls back to settings).
        body: Optional review comment (GitHub only).
    """
    settings = settings or load_settings()
    info = _resolve_remote(remote_url, path)
    if info.platform == "GitHub":
        client = GitHubClient.from_settings(settings, token=token, session=session)
        return client.approve_pull_request(info.organization, info.repository, pull_request_id, body=body)
    client = _ado_client(info, settings, pat, session)
    return client.approve_pull_request(info.repository, pull_request_id)


def complete_pull_request(pull_request_id, remote_url=None, path=".", *,
                          merge_strategy="squash", delete_source_branch=True,
                          pat=None, token=None, settings=None, session=None):
    """
    Merge/complete a pull request on whichever platform hosts the repository.

    ``merge_strategy`` uses the Azure DevOps names (noFastForward, squash,
    rebase, rebaseMerge); for GitHub, noFastForward maps to "merge" and
    rebaseMerge to "rebase".

    Returns:
        Dict describing the outcome (platform, pull_request_id, status, ...).
    """
    settings = settings or load_settings()
    info = _resolve_remote(remote_url, path)
    if info.platform == "GitHub":
        method = {"noFastForward": "merge", "rebaseMerge": "rebase"}.get(merge_strategy, merge_strategy)
        client = GitHubClient.from_settings(settings, token=token, session=session)
        result = client.merge_pull_request(
            info.organization, info.repository, pull_request_id,
            merge_method=method, delete_source_branch=delete_source_branch,
        )
        result["status"] = "completed" if result["merged"] else "not_merged"
        return result

    client = _ado_client(info, settings, pat, session)
    pr = client.complete_pull_request(
        info.repository, pull_request_id,
        merge_strategy=merge_strategy, delete_source_branch=delete_source_branch,
    )
    return {
        "platform": "AzureDevOps",
        "pull_request_id": pr.id,
        "status": pr.status,
        "merge_status": pr.merge_status,
        "title": pr.title,
    }
