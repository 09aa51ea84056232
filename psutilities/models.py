"""
Pydantic models for the records returned by PSUtilities operations.

Azure DevOps and GitHub responses are reshaped into these models so callers
get named fields instead of raw JSON:

* **VariableGroup** / **Variable** round-trip the variable-group wire format.
  Unknown keys on a variable (``isReadOnly`` and friends) are kept so a
  full-body PUT never drops them.
* **VariableUpsertResult** is what an upsert reports.  Secret values are
  masked before they ever reach it.
* **Project**, **Repository**, **PullRequest**, **WorkItem**, **Pipeline** and
  **PipelineRun** are thin read models.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

#: Placeholder shown instead of a secret value.
SECRET_MASK = "********"


# ---------------------------------------------------------------------------
# Variable groups
# ---------------------------------------------------------------------------

class Variable(BaseModel):
    """A single variable inside a variable group.

    ``value`` is ``None`` when the server masks a secret on read.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    value: Optional[str] = None
    is_secret: bool = Field(default=False, alias="isSecret")

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True)


class VariableGroup(BaseModel):
    """An Azure DevOps variable group as fetched from the service."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    name: str
    description: Optional[str] = ""
    type: str = "Vsts"
    variables: dict[str, Variable] = {}
    provider_data: Optional[dict] = Field(default=None, alias="providerData")
    project_references: list[dict] = Field(
        default=[], alias="variableGroupProjectReferences"
    )

    @classmethod
    def from_api(cls, payload: dict) -> "VariableGroup":
        variables = {
            name: Variable.model_validate(entry or {})
            for name, entry in (payload.get("variables") or {}).items()
        }
        return cls(
            id=payload.get("id"),
            name=payload.get("name", ""),
            description=payload.get("description") or "",
            type=payload.get("type") or "Vsts",
            variables=variables,
            providerData=payload.get("providerData"),
            variableGroupProjectReferences=payload.get("variableGroupProjectReferences") or [],
        )

    def to_api_body(self) -> dict:
        """Return the full body for a create (POST) or replace (PUT)."""
        body: dict = {
            "name": self.name,
            "description": self.description or "",
            "type": self.type,
            "variables": {name: var.to_api() for name, var in self.variables.items()},
            "variableGroupProjectReferences": self.project_references,
        }
        if self.id is not None:
            body["id"] = self.id
        if self.provider_data is not None:
            body["providerData"] = self.provider_data
        return body

    def plain_values(self) -> dict[str, Optional[str]]:
        """Map of variable name to value, with secrets masked."""
        return {
            name: (SECRET_MASK if var.is_secret else var.value)
            for name, var in self.variables.items()
        }


class VariableUpsertResult(BaseModel):
    """Outcome of setting one variable in a variable group."""

    action: Literal["Added", "Updated"]
    group_id: int
    group_name: str
    variable_name: str
    value: Optional[str] = None
    is_secret: bool = False


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class Project(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "Project":
        return cls(
            id=payload.get("id", ""),
            name=payload.get("name", ""),
            description=payload.get("description"),
            state=payload.get("state"),
            url=payload.get("url"),
        )


class Repository(BaseModel):
    id: str
    name: str
    default_branch: Optional[str] = None
    remote_url: Optional[str] = None
    web_url: Optional[str] = None
    project: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "Repository":
        return cls(
            id=payload.get("id", ""),
            name=payload.get("name", ""),
            default_branch=payload.get("defaultBranch"),
            remote_url=payload.get("remoteUrl"),
            web_url=payload.get("webUrl"),
            project=(payload.get("project") or {}).get("name"),
        )


def _short_ref(ref: Optional[str]) -> Optional[str]:
    if ref and ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):]
    return ref


class PullRequest(BaseModel):
    """A pull request on either platform."""

    platform: Literal["AzureDevOps", "GitHub"]
    id: int
    title: str = ""
    status: Optional[str] = None
    source_branch: Optional[str] = None
    target_branch: Optional[str] = None
    created_by: Optional[str] = None
    is_draft: bool = False
    merge_status: Optional[str] = None
    url: Optional[str] = None
    last_merge_source_commit: Optional[str] = None

    @classmethod
    def from_ado(cls, payload: dict) -> "PullRequest":
        return cls(
            platform="AzureDevOps",
            id=payload.get("pullRequestId", 0),
            title=payload.get("title", ""),
            status=payload.get("status"),
            source_branch=_short_ref(payload.get("sourceRefName")),
            target_branch=_short_ref(payload.get("targetRefName")),
            created_by=(payload.get("createdBy") or {}).get("displayName"),
            is_draft=bool(payload.get("isDraft", False)),
            merge_status=payload.get("mergeStatus"),
            url=payload.get("url"),
            last_merge_source_commit=(payload.get("lastMergeSourceCommit") or {}).get("commitId"),
        )

    @classmethod
    def from_github(cls, payload: dict) -> "PullRequest":
        state = payload.get("state")
        if payload.get("merged") or payload.get("merged_at"):
            state = "merged"
        return cls(
            platform="GitHub",
            id=payload.get("number", 0),
            title=payload.get("title", ""),
            status=state,
            source_branch=(payload.get("head") or {}).get("ref"),
            target_branch=(payload.get("base") or {}).get("ref"),
            created_by=(payload.get("user") or {}).get("login"),
            is_draft=bool(payload.get("draft", False)),
            merge_status=payload.get("mergeable_state"),
            url=payload.get("html_url"),
            last_merge_source_commit=(payload.get("head") or {}).get("sha"),
        )


class WorkItem(BaseModel):
    id: int
    type: str = ""
    title: str = ""
    state: Optional[str] = None
    fields: dict = {}
    url: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "WorkItem":
        fields = payload.get("fields") or {}
        return cls(
            id=payload.get("id", 0),
            type=fields.get("System.WorkItemType", ""),
            title=fields.get("System.Title", ""),
            state=fields.get("System.State"),
            fields=fields,
            url=payload.get("url"),
        )


class Pipeline(BaseModel):
    id: int
    name: str
    folder: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "Pipeline":
        return cls(
            id=payload.get("id", 0),
            name=payload.get("name", ""),
            folder=payload.get("folder"),
            url=((payload.get("_links") or {}).get("web") or {}).get("href") or payload.get("url"),
        )


class PipelineRun(BaseModel):
    id: int
    name: Optional[str] = None
    state: Optional[str] = None
    result: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "PipelineRun":
        return cls(
            id=payload.get("id", 0),
            name=payload.get("name"),
            state=payload.get("state"),
            result=payload.get("result"),
            url=((payload.get("_links") or {}).get("web") or {}).get("href") or payload.get("url"),
        )


class RemoteInfo(BaseModel):
    """A git remote URL broken into its platform-specific parts.

    For GitHub remotes ``organization`` holds the owner and ``project`` is
    ``None``.
    """

    platform: Literal["AzureDevOps", "GitHub"]
    organization: str
    project: Optional[str] = None
    repository: str
    url: str
