"""
Azure DevOps REST API client.

Covers projects, repositories, pull requests, work items, pipelines and
variable groups.  Every call authenticates with a PAT through
:func:`psutilities.auth.ado_auth_header` and returns pydantic records from
:mod:`psutilities.models`.
"""

from __future__ import annotations

import logging

import requests

from .auth import ado_auth_header
from .errors import (
    ApiError,
    NotFoundError,
    ParameterValidationError,
    VariableGroupNotFoundError,
)
from .models import (
    Pipeline,
    PipelineRun,
    Project,
    PullRequest,
    Repository,
    Variable,
    VariableGroup,
    WorkItem,
)
from .rest import quote_segment, send_request

logger = logging.getLogger(__name__)

MERGE_STRATEGIES = ("noFastForward", "squash", "rebase", "rebaseMerge")


class DevOpsClient:
    """Client for Azure DevOps projects, repos, pull requests, work items,
    pipelines and variable groups."""

    api_version = "7.1"
    variable_group_api_version = "7.1-preview.2"

    def __init__(self, organization=None, project=None, pat=None, session=None, timeout=30):
        self.organization = organization
        self.project = project
        self.pat = pat
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    @classmethod
    def from_settings(cls, settings, **overrides):
        """Build a client from :class:`psutilities.config.Settings`.

        Non-empty keyword overrides win over the settings values.
        """
        return cls(
            organization=overrides.get("organization") or settings.organization,
            project=overrides.get("project") or settings.project,
            pat=overrides.get("pat") or settings.pat,
            session=overrides.get("session"),
            timeout=settings.http_timeout,
        )

    def configure(self, organization, project, pat):
        """Point the client at a different organization/project/PAT."""
        self.organization = organization
        self.project = project
        self.pat = pat

    @property
    def org_url(self):
        return f"https://dev.azure.com/{quote_segment(self.organization)}"

    @property
    def project_url(self):
        return f"{self.org_url}/{quote_segment(self.project)}"

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _require(self, project=True):
        """Fail fast when organization, PAT (and project) are missing."""
        missing = []
        if not self.organization:
            missing.append("organization (AZURE_DEVOPS_ORGANIZATION)")
        if project and not self.project:
            missing.append("project (AZURE_DEVOPS_PROJECT)")
        if not self.pat:
            missing.append("pat (AZURE_DEVOPS_PAT)")
        if missing:
            raise ParameterValidationError(f"Missing required parameter(s): {', '.join(missing)}")

    def _request(self, method, url, json=None, params=None, content_type="application/json"):
        headers = {**ado_auth_header(self.pat), "Accept": "application/json"}
        if json is not None:
            headers["Content-Type"] = content_type
        return send_request(
            self.session, method, url,
            headers=headers, timeout=self.timeout, json=json, params=params,
        )

    # ------------------------------------------------------------------
    # Connection / projects / repositories
    # ------------------------------------------------------------------

    def validate_connection(self):
        """
        Test the Azure DevOps connection.

        Returns:
            Tuple (ok: bool, message: str).
        """
        try:
            project = self.get_project()
        except ParameterValidationError as e:
            return False, str(e)
        except NotFoundError:
            return False, f"Project '{self.project}' not found in org '{self.organization}'."
        except ApiError as e:
            if e.status_code == 401:
                return False, "Authentication failed: PAT may be expired or invalid."
            if e.status_code is None:
                return False, f"Connection error: {e.message}"
            return False, f"Connection failed: HTTP {e.status_code}"
        return True, f"Connected to project: {project.name}"

    def get_projects(self):
        """List all projects in the organization."""
        self._require(project=False)
        url = f"{self.org_url}/_apis/projects"
        payload = self._request("GET", url, params={"api-version": self.api_version})
        return [Project.from_api(p) for p in (payload or {}).get("value", [])]

    def get_project(self):
        """Get the configured project (id, name, state)."""
        self._require()
        url = f"{self.org_url}/_apis/projects/{quote_segment(self.project)}"
        return Project.from_api(self._request("GET", url, params={"api-version": self.api_version}) or {})

    def get_repositories(self):
        """List git repositories in the project."""
        self._require()
        url = f"{self.project_url}/_apis/git/repositories"
        payload = self._request("GET", url, params={"api-version": self.api_version})
        return [Repository.from_api(r) for r in (payload or {}).get("value", [])]

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    def _pull_requests_url(self, repository):
        return f"{self.project_url}/_apis/git/repositories/{quote_segment(repository)}/pullrequests"

    def get_pull_requests(self, repository, status="active"):
        """
        List pull requests in a repository.

        Args:
            repository: Repository name or id.
            status: "active", "completed", "abandoned" or "all".
        """
        self._require()
        if not repository:
            raise ParameterValidationError("repository is required.")
        params = {"searchCriteria.status": status, "api-version": self.api_version}
        payload = self._request("GET", self._pull_requests_url(repository), params=params)
        return [PullRequest.from_ado(pr) for pr in (payload or {}).get("value", [])]

    def get_pull_request(self, repository, pull_request_id):
        """Get one pull request; raises NotFoundError if it does not exist."""
        self._require()
        url = f"{self._pull_requests_url(repository)}/{int(pull_request_id)}"
        payload = self._request("GET", url, params={"api-version": self.api_version})
        return PullRequest.from_ado(payload or {})

    def create_pull_request(self, repository, source_branch, target_branch, title,
                            description="", is_draft=False):
        """Open a pull request from *source_branch* into *target_branch*."""
        self._require()
        for name, value in (("repository", repository), ("source_branch", source_branch),
                            ("target_branch", target_branch), ("title", title)):
            if not value:
                raise ParameterValidationError(f"{name} is required.")

        def _ref(branch):
            return branch if branch.startswith("refs/") else f"refs/heads/{branch}"

        body = {
            "sourceRefName": _ref(source_branch),
            "targetRefName": _ref(target_branch),
            "title": title,
            "description": description,
            "isDraft": is_draft,
        }
        payload = self._request(
            "POST", self._pull_requests_url(repository),
            json=body, params={"api-version": self.api_version},
        )
        pr = PullRequest.from_ado(payload or {})
        logger.info("Created pull request %s in %s", pr.id, repository)
        return pr

    def get_authenticated_user(self):
        """Return the identity dict behind the PAT (``id``, ``providerDisplayName``)."""
        self._require(project=False)
        payload = self._request("GET", f"{self.org_url}/_apis/connectionData")
        user = (payload or {}).get("authenticatedUser") or {}
        if not user.get("id"):
            raise ApiError("connectionData did not return an authenticated user",
                           method="GET", url=f"{self.org_url}/_apis/connectionData")
        return user

    def approve_pull_request(self, repository, pull_request_id):
        """
        Cast an "Approved" vote (10) on a pull request as the PAT owner.

        Returns:
            Dict with platform, pull_request_id, reviewer, vote and status.
        """
        self._require()
        user = self.get_authenticated_user()
        reviewer_id = user["id"]
        url = f"{self._pull_requests_url(repository)}/{int(pull_request_id)}/reviewers/{quote_segment(reviewer_id)}"
        payload = self._request(
            "PUT", url, json={"vote": 10, "id": reviewer_id},
            params={"api-version": self.api_version},
        ) or {}
        logger.info("Approved pull request %s in %s", pull_request_id, repository)
        return {
            "platform": "AzureDevOps",
            "pull_request_id": int(pull_request_id),
            "reviewer": payload.get("displayName") or user.get("providerDisplayName"),
            "vote": payload.get("vote", 10),
            "status": "approved",
        }

    def complete_pull_request(self, repository, pull_request_id,
                              merge_strategy="squash", delete_source_branch=True):
        """
        Complete (merge) a pull request.

        The current ``lastMergeSourceCommit`` is read first; Azure DevOps
        refuses completion without it.
        """
        if merge_strategy not in MERGE_STRATEGIES:
            raise ParameterValidationError(
                f"merge_strategy must be one of {', '.join(MERGE_STRATEGIES)}; got '{merge_strategy}'."
            )
        current = self.get_pull_request(repository, pull_request_id)
        body = {
            "status": "completed",
            "lastMergeSourceCommit": {"commitId": current.last_merge_source_commit},
            "completionOptions": {
                "mergeStrategy": merge_strategy,
                "deleteSourceBranch": delete_source_branch,
            },
        }
        url = f"{self._pull_requests_url(repository)}/{int(pull_request_id)}"
        payload = self._request("PATCH", url, json=body, params={"api-version": self.api_version})
        logger.info("Completed pull request %s in %s (%s)", pull_request_id, repository, merge_strategy)
        return PullRequest.from_ado(payload or {})

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def get_work_item(self, work_item_id):
        """Get a work item by ID; raises NotFoundError if it does not exist."""
        self._require()
        url = f"{self.project_url}/_apis/wit/workitems/{int(work_item_id)}"
        return WorkItem.from_api(self._request("GET", url, params={"api-version": self.api_version}) or {})

    def create_work_item(self, work_item_type, title, description=None, fields=None, parent_id=None):
        """
        Create a work item of any type.

        Args:
            work_item_type: e.g. "Epic", "User Story", "Task", "Bug".
            title: Work item title.
            description: Plain text; converted to HTML.
            fields: Extra field reference name -> value pairs.
            parent_id: Numeric ID of the parent work item (optional).
        """
        self._require()
        if not work_item_type or not title:
            raise ParameterValidationError("work_item_type and title are required.")

        body = [{"op": "add", "path": "/fields/System.Title", "value": title}]
        if description:
            body.append({"op": "add", "path": "/fields/System.Description",
                         "value": self._to_html(description)})
        for field, value in (fields or {}).items():
            body.append({"op": "add", "path": f"/fields/{field}", "value": value})
        if parent_id:
            body.append({
                "op": "add",
                "path": "/relations/-",
                "value": {
                    "rel": "System.LinkTypes.Hierarchy-Reverse",
                    "url": f"{self.org_url}/_apis/wit/workItems/{int(parent_id)}",
                },
            })

        url = f"{self.project_url}/_apis/wit/workitems/${quote_segment(work_item_type)}"
        payload = self._request("POST", url, json=body, params={"api-version": self.api_version},
                                content_type="application/json-patch+json")
        item = WorkItem.from_api(payload or {})
        logger.info("Created %s %s", work_item_type, item.id)
        return item

    def update_work_item(self, work_item_id, fields):
        """Set the given fields (reference name -> value) on a work item.

        Sent as JSON-patch ``add`` ops, which overwrite a field that already
        has a value.
        """
        self._require()
        if not fields:
            raise ParameterValidationError("No fields to update.")
        body = [
            {"op": "add", "path": f"/fields/{field}", "value": value}
            for field, value in fields.items()
        ]
        url = f"{self.project_url}/_apis/wit/workitems/{int(work_item_id)}"
        payload = self._request("PATCH", url, json=body, params={"api-version": self.api_version},
                                content_type="application/json-patch+json")
        return WorkItem.from_api(payload or {})

    @staticmethod
    def _to_html(text):
        """Convert plain text to HTML for Azure DevOps rich-text fields.

        * Lines starting with ``•`` or ``- `` become ``<li>`` items inside a ``<ul>``.
        * Other non-empty lines become ``<p>`` paragraphs.
        * Blank lines are ignored.
        """
        if not text:
            return text

        html_parts = []
        bullet_buffer = []

        def _flush_bullets():
            if bullet_buffer:
                items = "".join(f"<li>{b}</li>" for b in bullet_buffer)
                html_parts.append(f"<ul>{items}</ul>")
                bullet_buffer.clear()

        for line in text.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith("•") or stripped.startswith("- "):
                bullet_buffer.append(stripped.lstrip("•- ").strip())
            else:
                _flush_bullets()
                html_parts.append(f"<p>{stripped}</p>")

        _flush_bullets()
        return "".join(html_parts)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def get_pipelines(self):
        self._require()
        url = f"{self.project_url}/_apis/pipelines"
        payload = self._request("GET", url, params={"api-version": self.api_version})
        return [Pipeline.from_api(p) for p in (payload or {}).get("value", [])]

    def run_pipeline(self, pipeline_id, branch=None):
        """Queue a run of *pipeline_id*, optionally on *branch*."""
        self._require()
        body: dict = {}
        if branch:
            ref = branch if branch.startswith("refs/") else f"refs/heads/{branch}"
            body = {"resources": {"repositories": {"self": {"refName": ref}}}}
        url = f"{self.project_url}/_apis/pipelines/{int(pipeline_id)}/runs"
        payload = self._request("POST", url, json=body, params={"api-version": self.api_version})
        run = PipelineRun.from_api(payload or {})
        logger.info("Queued run %s of pipeline %s", run.id, pipeline_id)
        return run

    # ------------------------------------------------------------------
    # Variable groups
    # ------------------------------------------------------------------

    def _variable_groups_url(self, scope="project"):
        base = self.project_url if scope == "project" else self.org_url
        return f"{base}/_apis/distributedtask/variablegroups"

    def get_variable_groups(self, name=None):
        """
        List variable groups in the project.

        Args:
            name: Optional name filter (the service accepts ``*`` wildcards).
        """
        self._require()
        params = {"api-version": self.variable_group_api_version}
        if name:
            params["groupName"] = name
        payload = self._request("GET", self._variable_groups_url(), params=params)
        return [VariableGroup.from_api(g) for g in (payload or {}).get("value", [])]

    def get_variable_group(self, group_id):
        """
        Fetch the full definition of a variable group.

        Raises:
            VariableGroupNotFoundError: if the group does not exist.
        """
        self._require()
        url = f"{self._variable_groups_url()}/{int(group_id)}"
        try:
            payload = self._request("GET", url, params={"api-version": self.variable_group_api_version})
        except NotFoundError as e:
            raise VariableGroupNotFoundError(int(group_id), self.project) from e
        # The service answers 200 with an empty body for unknown ids.
        if not payload:
            raise VariableGroupNotFoundError(int(group_id), self.project)
        return VariableGroup.from_api(payload)

    def find_variable_group(self, name):
        """Resolve a variable group by exact (case-insensitive) name."""
        if not name:
            raise ParameterValidationError("Variable group name is required.")
        for group in self.get_variable_groups(name=name):
            if group.name.lower() == name.lower():
                return group
        raise VariableGroupNotFoundError(name, self.project)

    def load_variable_group(self, group):
        """
        Fetch the full definition of a variable group given as an id or a name.

        An int is always an id.  A digit-only string is tried as an id first
        and, when no group has that id, as a name (so a group called "2024"
        stays reachable).  Any other string is looked up by name.

        Raises:
            VariableGroupNotFoundError: if neither lookup finds the group.
        """
        if isinstance(group, int):
            return self.get_variable_group(group)
        if isinstance(group, str) and group.isdigit():
            try:
                return self.get_variable_group(int(group))
            except VariableGroupNotFoundError:
                logger.debug("No variable group with id %s; trying it as a name", group)
        return self.get_variable_group(self.find_variable_group(group).id)

    def create_variable_group(self, name, variables=None, description=""):
        """
        Create a variable group in the project.

        Args:
            name: Group name.
            variables: Mapping of name -> value (str) or name -> (value, is_secret).
            description: Optional description.
        """
        self._require()
        if not name:
            raise ParameterValidationError("Variable group name is required.")

        parsed = {}
        for var_name, spec in (variables or {}).items():
            if isinstance(spec, tuple):
                value, secret = spec
            else:
                value, secret = spec, False
            parsed[var_name] = Variable(value="" if value is None else str(value), is_secret=secret)
        if not parsed:
            # The service rejects groups without variables.
            raise ParameterValidationError("A variable group needs at least one variable.")

        project = self.get_project()
        group = VariableGroup(
            name=name,
            description=description,
            variables=parsed,
            variableGroupProjectReferences=[{
                "name": name,
                "description": description,
                "projectReference": {"id": project.id, "name": project.name},
            }],
        )
        payload = self._request(
            "POST", self._variable_groups_url(scope="org"),
            json=group.to_api_body(), params={"api-version": self.variable_group_api_version},
        )
        created = VariableGroup.from_api(payload or {})
        logger.info("Created variable group '%s' (id %s)", created.name, created.id)
        return created

    def update_variable_group(self, group):
        """Write *group* back in full (PUT); returns the server's version."""
        self._require()
        if group.id is None:
            raise ParameterValidationError("Cannot update a variable group without an id.")
        url = f"{self._variable_groups_url(scope='org')}/{group.id}"
        payload = self._request(
            "PUT", url, json=group.to_api_body(),
            params={"api-version": self.variable_group_api_version},
        )
        return VariableGroup.from_api(payload or {})

    def set_variable_group(self, group, name=None, description=None):
        """
        Rename a variable group and/or change its description.

        The full group is read first and written back with every variable
        intact.  The response is returned as the service sent it, even if
        it still shows the old name or description.
        """
        if name is None and description is None:
            raise ParameterValidationError("Nothing to update: pass name and/or description.")
        current = self.load_variable_group(group)
        changes = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        updated = self.update_variable_group(current.model_copy(update=changes))
        logger.info("Updated variable group %s (%s)", current.id, ", ".join(changes))
        return updated
