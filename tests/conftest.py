"""
Shared test configuration.

Clears Azure DevOps / GitHub credentials from the environment so that no
test can reach a real service, and provides in-memory fakes of the Azure
DevOps and GitHub REST APIs that the clients talk to through their
``session`` argument.
"""

import base64
import copy
import fnmatch
import json as jsonlib
import os
import re
import sys
from urllib.parse import unquote, urlparse

import pytest

# Ensure the package is importable from all test files
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# ---------------------------------------------------------------------------
# Strip credentials from the process environment so that load_dotenv()
# cannot inject them.  Empty strings count as "already set" for
# load_dotenv(override=False), so a stray .env file is ignored too.
# ---------------------------------------------------------------------------
_CREDENTIAL_VARS = [
    "AZURE_DEVOPS_ORGANIZATION",
    "AZURE_DEVOPS_PROJECT",
    "AZURE_DEVOPS_PAT",
    "GITHUB_TOKEN",
]

for var in _CREDENTIAL_VARS:
    os.environ[var] = ""


ORG = "contoso"
PROJECT = "MyProject"
PAT = "test-pat"
GITHUB_TOKEN = "gh-token"


# ---------------------------------------------------------------------------
# Fake HTTP layer
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        if text is not None:
            self.text = text
        elif payload is None:
            self.text = ""
        else:
            self.text = jsonlib.dumps(payload)
        self.content = self.text.encode("utf-8")

    def json(self):
        return jsonlib.loads(self.text)


class _FakeService:
    """Base for fakes: records calls, checks auth, supports failure injection."""

    expected_auth = ""

    def __init__(self):
        self.calls = []
        self.failures = {}

    def fail(self, method, path_fragment, status=500, message="boom"):
        """Make the next matching call answer with *status*."""
        self.failures[(method, path_fragment)] = (status, message)

    def calls_to(self, method):
        return [c for c in self.calls if c["method"] == method]

    def request(self, method, url, headers=None, json=None, params=None, timeout=None):
        path = unquote(urlparse(url).path)
        self.calls.append({"method": method, "path": path, "json": copy.deepcopy(json),
                           "params": dict(params or {}), "headers": dict(headers or {})})
        if (headers or {}).get("Authorization") != self.expected_auth:
            return FakeResponse(401, text="Unauthorized")
        for (f_method, fragment), (status, message) in list(self.failures.items()):
            if f_method == method and fragment in path:
                del self.failures[(f_method, fragment)]
                return FakeResponse(status, {"message": message})
        return self.route(method, path, json, params or {})

    def route(self, method, path, body, params):
        raise NotImplementedError


class FakeAzureDevOps(_FakeService):
    """Just enough of dev.azure.com for the client tests."""

    expected_auth = "Basic " + base64.b64encode(f":{PAT}".encode()).decode()

    def __init__(self):
        super().__init__()
        self.project = {"id": "proj-guid", "name": PROJECT, "state": "wellFormed"}
        self.repositories = [{"id": "repo-guid", "name": "app", "defaultBranch": "refs/heads/main",
                              "remoteUrl": f"https://dev.azure.com/{ORG}/{PROJECT}/_git/app",
                              "project": {"name": PROJECT}}]
        self.user = {"id": "user-1", "providerDisplayName": "Test User"}
        # stored with real secret values; masked on the way out
        self.groups = {}
        self.pull_requests = {}
        self.work_items = {}
        self.pipelines = [{"id": 7, "name": "ci", "folder": "\\",
                           "_links": {"web": {"href": "https://dev.azure.com/ci"}}}]
        self._next_group_id = 1
        self._next_pr_id = 1
        self._next_wi_id = 1

    # -- seeding helpers ----------------------------------------------------

    def add_group(self, group_id, name, variables, description=""):
        """Seed a group; *variables* maps name -> value or (value, is_secret)."""
        stored = {}
        for key, spec in variables.items():
            value, secret = spec if isinstance(spec, tuple) else (spec, False)
            stored[key] = {"value": value, "isSecret": secret}
        self.groups[group_id] = {
            "id": group_id,
            "type": "Vsts",
            "name": name,
            "description": description,
            "variables": stored,
            "variableGroupProjectReferences": [{
                "name": name, "description": description,
                "projectReference": {"id": "proj-guid", "name": PROJECT},
            }],
        }
        self._next_group_id = max(self._next_group_id, group_id + 1)
        return self.groups[group_id]

    def add_pull_request(self, repo="app", title="PR", source="feature", target="main"):
        pr_id = self._next_pr_id
        self._next_pr_id += 1
        self.pull_requests[pr_id] = {
            "pullRequestId": pr_id, "title": title, "status": "active",
            "sourceRefName": f"refs/heads/{source}", "targetRefName": f"refs/heads/{target}",
            "createdBy": {"displayName": "Test User"}, "isDraft": False,
            "mergeStatus": "succeeded", "repository": {"name": repo},
            "lastMergeSourceCommit": {"commitId": f"abc{pr_id}"},
        }
        return self.pull_requests[pr_id]

    def stored_values(self, group_id):
        return {k: v["value"] for k, v in self.groups[group_id]["variables"].items()}

    @staticmethod
    def _masked(group):
        out = copy.deepcopy(group)
        for var in out["variables"].values():
            if var.get("isSecret"):
                var["value"] = None
        return out

    # -- routing ------------------------------------------------------------

    def route(self, method, path, body, params):
        org_prefix = f"/{ORG}"
        proj_prefix = f"/{ORG}/{PROJECT}"

        if method == "GET" and path == f"{org_prefix}/_apis/projects":
            return FakeResponse(200, {"count": 1, "value": [self.project]})
        m = re.fullmatch(rf"{org_prefix}/_apis/projects/([^/]+)", path)
        if method == "GET" and m:
            if m.group(1) != PROJECT:
                return FakeResponse(404, {"message": f"Project {m.group(1)} not found"})
            return FakeResponse(200, self.project)
        if method == "GET" and path == f"{org_prefix}/_apis/connectionData":
            return FakeResponse(200, {"authenticatedUser": self.user})

        # variable groups (project scope reads, org scope writes)
        if method == "GET" and path == f"{proj_prefix}/_apis/distributedtask/variablegroups":
            pattern = params.get("groupName")
            groups = [
                self._masked(g) for g in self.groups.values()
                if not pattern or fnmatch.fnmatch(g["name"].lower(), pattern.lower())
            ]
            return FakeResponse(200, {"count": len(groups), "value": groups})
        m = re.fullmatch(rf"{proj_prefix}/_apis/distributedtask/variablegroups/(\d+)", path)
        if method == "GET" and m:
            group = self.groups.get(int(m.group(1)))
            return FakeResponse(200, self._masked(group) if group else None)
        if method == "POST" and path == f"{org_prefix}/_apis/distributedtask/variablegroups":
            group_id = self._next_group_id
            self._next_group_id += 1
            self.groups[group_id] = {**copy.deepcopy(body), "id": group_id}
            return FakeResponse(200, self._masked(self.groups[group_id]))
        m = re.fullmatch(rf"{org_prefix}/_apis/distributedtask/variablegroups/(\d+)", path)
        if method == "PUT" and m:
            group_id = int(m.group(1))
            if group_id not in self.groups:
                return FakeResponse(404, {"message": "Variable group not found"})
            previous = self.groups[group_id]["variables"]
            new_vars = copy.deepcopy(body["variables"])
            for key, var in new_vars.items():
                # secrets sent back without a value keep the stored one
                if var.get("isSecret") and var.get("value") is None and key in previous:
                    var["value"] = previous[key]["value"]
            self.groups[group_id] = {**copy.deepcopy(body), "id": group_id, "variables": new_vars}
            return FakeResponse(200, self._masked(self.groups[group_id]))

        # repositories / pull requests
        if method == "GET" and path == f"{proj_prefix}/_apis/git/repositories":
            return FakeResponse(200, {"count": len(self.repositories), "value": self.repositories})
        m = re.fullmatch(rf"{proj_prefix}/_apis/git/repositories/([^/]+)/pullrequests", path)
        if m and method == "GET":
            status = params.get("searchCriteria.status", "active")
            prs = [p for p in self.pull_requests.values()
                   if p["repository"]["name"] == m.group(1) and status in ("all", p["status"])]
            return FakeResponse(200, {"count": len(prs), "value": prs})
        if m and method == "POST":
            pr = self.add_pull_request(
                m.group(1), body["title"],
                body["sourceRefName"].replace("refs/heads/", ""),
                body["targetRefName"].replace("refs/heads/", ""),
            )
            pr["isDraft"] = body.get("isDraft", False)
            return FakeResponse(201, pr)
        m = re.fullmatch(rf"{proj_prefix}/_apis/git/repositories/[^/]+/pullrequests/(\d+)", path)
        if m:
            pr = self.pull_requests.get(int(m.group(1)))
            if pr is None:
                return FakeResponse(404, {"message": "Pull request not found"})
            if method == "GET":
                return FakeResponse(200, pr)
            if method == "PATCH":
                if body.get("lastMergeSourceCommit") != pr["lastMergeSourceCommit"]:
                    return FakeResponse(409, {"message": "lastMergeSourceCommit is stale"})
                pr["status"] = body["status"]
                pr["completionOptions"] = body.get("completionOptions")
                return FakeResponse(200, pr)
        m = re.fullmatch(rf"{proj_prefix}/_apis/git/repositories/[^/]+/pullrequests/(\d+)/reviewers/([^/]+)", path)
        if m and method == "PUT":
            return FakeResponse(200, {"id": m.group(2), "displayName": "Test User", "vote": body["vote"]})

        # work items
        m = re.fullmatch(rf"{proj_prefix}/_apis/wit/workitems/\$(.+)", path)
        if m and method == "POST":
            wi_id = self._next_wi_id
            self._next_wi_id += 1
            fields = {"System.WorkItemType": m.group(1), "System.State": "New"}
            relations = []
            for op in body:
                if op["path"].startswith("/fields/"):
                    fields[op["path"][len("/fields/"):]] = op["value"]
                else:
                    relations.append(op["value"])
            self.work_items[wi_id] = {"id": wi_id, "fields": fields, "relations": relations}
            return FakeResponse(200, self.work_items[wi_id])
        m = re.fullmatch(rf"{proj_prefix}/_apis/wit/workitems/(\d+)", path)
        if m:
            item = self.work_items.get(int(m.group(1)))
            if item is None:
                return FakeResponse(404, {"message": f"Work item {m.group(1)} does not exist"})
            if method == "GET":
                return FakeResponse(200, item)
            if method == "PATCH":
                for op in body:
                    item["fields"][op["path"][len("/fields/"):]] = op["value"]
                return FakeResponse(200, item)

        # pipelines
        if method == "GET" and path == f"{proj_prefix}/_apis/pipelines":
            return FakeResponse(200, {"count": len(self.pipelines), "value": self.pipelines})
        m = re.fullmatch(rf"{proj_prefix}/_apis/pipelines/(\d+)/runs", path)
        if m and method == "POST":
            return FakeResponse(200, {"id": 100, "name": "20260101.1", "state": "inProgress",
                                      "_links": {"web": {"href": "https://dev.azure.com/run/100"}}})

        return FakeResponse(404, {"message": f"No fake route for {method} {path}"})


class FakeGitHub(_FakeService):
    """Just enough of api.github.com for pull request review/merge."""

    expected_auth = f"Bearer {GITHUB_TOKEN}"

    def __init__(self):
        super().__init__()
        self.pulls = {
            5: {"number": 5, "title": "Add thing", "state": "open", "draft": False,
                "head": {"ref": "feature/thing", "sha": "deadbeef", "repo": {"full_name": "octo/repo"}},
                "base": {"ref": "main", "repo": {"full_name": "octo/repo"}},
                "user": {"login": "octocat"}, "html_url": "https://github.com/octo/repo/pull/5"},
            # opened from a fork that has a branch named like one upstream
            6: {"number": 6, "title": "Fork change", "state": "open", "draft": False,
                "head": {"ref": "develop", "sha": "f0f0f0", "repo": {"full_name": "someone/repo-fork"}},
                "base": {"ref": "main", "repo": {"full_name": "octo/repo"}},
                "user": {"login": "someone"}, "html_url": "https://github.com/octo/repo/pull/6"},
        }
        self.deleted_refs = []

    def route(self, method, path, body, params):
        m = re.fullmatch(r"/repos/([^/]+)/([^/]+)/pulls/(\d+)(/reviews|/merge)?", path)
        if m:
            pr = self.pulls.get(int(m.group(3)))
            if pr is None:
                return FakeResponse(404, {"message": "Not Found"})
            suffix = m.group(4)
            if suffix is None and method == "GET":
                return FakeResponse(200, pr)
            if suffix == "/reviews" and method == "POST":
                return FakeResponse(200, {"id": 1, "user": {"login": "reviewer"}, "state": "APPROVED"})
            if suffix == "/merge" and method == "PUT":
                pr["merged"] = True
                pr["state"] = "closed"
                return FakeResponse(200, {"sha": "cafef00d", "merged": True,
                                          "message": "Pull Request successfully merged"})
        m = re.fullmatch(r"/repos/[^/]+/[^/]+/git/refs/heads/(.+)", path)
        if m and method == "DELETE":
            self.deleted_refs.append(m.group(1))
            return FakeResponse(204)
        return FakeResponse(404, {"message": "Not Found"})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def ado():
    return FakeAzureDevOps()


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def client(ado):
    from psutilities.devops_client import DevOpsClient
    return DevOpsClient(ORG, PROJECT, PAT, session=ado)


@pytest.fixture
def gh_client(github):
    from psutilities.github_client import GitHubClient
    return GitHubClient(GITHUB_TOKEN, session=github)
