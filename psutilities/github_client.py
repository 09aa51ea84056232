"""
GitHub REST API client for pull request review and merge.
"""

from __future__ import annotations

import logging

import requests

from .auth import github_auth_header
from .errors import ApiError, ParameterValidationError
from .models import PullRequest
from .rest import quote_segment, send_request

logger = logging.getLogger(__name__)

MERGE_METHODS = ("merge", "squash", "rebase")


class GitHubClient:
    """Client for GitHub pull request operations."""

    base_url = "https://api.github.com"
    api_version = "2022-11-28"

    def __init__(self, token=None, session=None, timeout=30):
        self.token = token
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    @classmethod
    def from_settings(cls, settings, token=None, session=None):
        return cls(token=token or settings.github_token, session=session,
                   timeout=settings.http_timeout)

    def _request(self, method, path, json=None):
        headers = {
            **github_auth_header(self.token),
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.api_version,
        }
        return send_request(
            self.session, method, f"{self.base_url}{path}",
            headers=headers, timeout=self.timeout, json=json,
        )

    @staticmethod
    def _pull_path(owner, repo, number):
        if not owner or not repo:
            raise ParameterValidationError("owner and repo are required.")
        return f"/repos/{quote_segment(owner)}/{quote_segment(repo)}/pulls/{int(number)}"

    def get_pull_request(self, owner, repo, number):
        payload = self._request("GET", self._pull_path(owner, repo, number))
        return PullRequest.from_github(payload or {})

    def approve_pull_request(self, owner, repo, number, body=""):
        """
        Submit an APPROVE review on a pull request.

        Returns:
            Dict with platform, pull_request_id, reviewer, state and status.
        """
        review = {"event": "APPROVE"}
        if body:
            review["body"] = body
        payload = self._request("POST", f"{self._pull_path(owner, repo, number)}/reviews", json=review) or {}
        logger.info("Approved pull request %s/%s#%s", owner, repo, number)
        return {
            "platform": "GitHub",
            "pull_request_id": int(number),
            "reviewer": (payload.get("user") or {}).get("login"),
            "state": payload.get("state", "APPROVED"),
            "status": "approved",
        }

    def _deletable_head_ref(self, owner, repo, path):
        """Return the PR's head branch if it lives in *owner*/*repo*, else None.

        Branches of pull requests opened from a fork live in the fork and are
        never deleted here.
        """
        payload = self._request("GET", path) or {}
        head = payload.get("head") or {}
        head_repo = (head.get("repo") or {}).get("full_name")
        base_repo = ((payload.get("base") or {}).get("repo") or {}).get("full_name") or f"{owner}/{repo}"
        if not head_repo or head_repo.lower() != base_repo.lower():
            logger.info("Keeping branch %s: it belongs to %s, not %s",
                        head.get("ref"), head_repo or "a deleted fork", base_repo)
            return None
        return head.get("ref")

    def merge_pull_request(self, owner, repo, number, merge_method="squash",
                           delete_source_branch=False, commit_title=None):
        """
        Merge a pull request.

        Args:
            merge_method: "merge", "squash" or "rebase".
            delete_source_branch: Delete the head branch after a merge.  Skipped
                for branches in a fork; a failed delete is logged and reported
                as ``branch_deleted=False``.
            commit_title: Optional title for the merge commit.

        Returns:
            Dict with platform, pull_request_id, merged, sha, message and
            branch_deleted.
        """
        if merge_method not in MERGE_METHODS:
            raise ParameterValidationError(
                f"merge_method must be one of {', '.join(MERGE_METHODS)}; got '{merge_method}'."
            )
        path = self._pull_path(owner, repo, number)
        head_ref = None
        if delete_source_branch:
            head_ref = self._deletable_head_ref(owner, repo, path)

        body = {"merge_method": merge_method}
        if commit_title:
            body["commit_title"] = commit_title
        payload = self._request("PUT", f"{path}/merge", json=body) or {}
        merged = bool(payload.get("merged"))
        logger.info("Merged pull request %s/%s#%s (%s)", owner, repo, number, merge_method)

        branch_deleted = False
        if merged and head_ref:
            try:
                self._request(
                    "DELETE",
                    f"/repos/{quote_segment(owner)}/{quote_segment(repo)}/git/refs/heads/{requests.utils.quote(head_ref, safe='/')}",
                )
            except ApiError as e:
                logger.warning("Merged %s/%s#%s but could not delete branch %s: %s",
                               owner, repo, number, head_ref, e)
            else:
                branch_deleted = True
                logger.info("Deleted branch %s in %s/%s", head_ref, owner, repo)

        return {
            "platform": "GitHub",
            "pull_request_id": int(number),
            "merged": merged,
            "sha": payload.get("sha"),
            "message": payload.get("message", ""),
            "branch_deleted": branch_deleted,
        }
