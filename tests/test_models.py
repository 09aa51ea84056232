"""Tests for the pydantic record models."""

from psutilities.models import (
    SECRET_MASK,
    Pipeline,
    PullRequest,
    Repository,
    Variable,
    VariableGroup,
    WorkItem,
)


# ── Variable / VariableGroup ─────────────────────────────────────────────────

class TestVariable:
    def test_alias_and_field_name(self):
        assert Variable(value="x", isSecret=True).is_secret is True
        assert Variable(value="x", is_secret=True).is_secret is True

    def test_defaults(self):
        var = Variable()
        assert var.value is None
        assert var.is_secret is False

    def test_to_api_uses_wire_names(self):
        assert Variable(value="x").to_api() == {"value": "x", "isSecret": False}


class TestVariableGroup:
    PAYLOAD = {
        "id": 42,
        "type": "Vsts",
        "name": "app-settings",
        "description": None,
        "variables": {
            "TestVar1": {"value": "Value1"},
            "Secret": {"value": None, "isSecret": True},
        },
        "providerData": None,
        "variableGroupProjectReferences": [
            {"name": "app-settings", "projectReference": {"id": "p", "name": "MyProject"}},
        ],
        "createdBy": {"displayName": "someone"},
    }

    def test_from_api(self):
        group = VariableGroup.from_api(self.PAYLOAD)
        assert group.id == 42
        assert group.description == ""
        assert list(group.variables) == ["TestVar1", "Secret"]
        assert group.variables["TestVar1"].is_secret is False
        assert group.variables["Secret"].value is None
        assert group.project_references[0]["projectReference"]["id"] == "p"

    def test_to_api_body_is_full_group(self):
        body = VariableGroup.from_api(self.PAYLOAD).to_api_body()
        assert body == {
            "id": 42,
            "name": "app-settings",
            "description": "",
            "type": "Vsts",
            "variables": {
                "TestVar1": {"value": "Value1", "isSecret": False},
                "Secret": {"value": None, "isSecret": True},
            },
            "variableGroupProjectReferences": self.PAYLOAD["variableGroupProjectReferences"],
        }

    def test_to_api_body_without_id(self):
        body = VariableGroup(name="new", variables={"A": Variable(value="1")}).to_api_body()
        assert "id" not in body

    def test_plain_values_masks_secrets(self):
        group = VariableGroup.from_api(self.PAYLOAD)
        assert group.plain_values() == {"TestVar1": "Value1", "Secret": SECRET_MASK}

    def test_variable_order_preserved(self):
        payload = {"id": 1, "name": "g", "variables": {k: {"value": k} for k in "zyxw"}}
        assert list(VariableGroup.from_api(payload).to_api_body()["variables"]) == list("zyxw")


# ── Read models ───────────────────────────────────────────────────────────────

def test_pull_request_from_ado():
    pr = PullRequest.from_ado({
        "pullRequestId": 3,
        "title": "T",
        "status": "active",
        "sourceRefName": "refs/heads/feature/a",
        "targetRefName": "refs/heads/main",
        "createdBy": {"displayName": "Ann"},
        "lastMergeSourceCommit": {"commitId": "abc"},
    })
    assert pr.platform == "AzureDevOps"
    assert pr.source_branch == "feature/a"
    assert pr.target_branch == "main"
    assert pr.created_by == "Ann"
    assert pr.last_merge_source_commit == "abc"


def test_pull_request_from_github_merged():
    pr = PullRequest.from_github({
        "number": 9, "title": "T", "state": "closed", "merged_at": "2026-01-01T00:00:00Z",
        "head": {"ref": "fix", "sha": "123"}, "base": {"ref": "main"},
        "user": {"login": "octocat"}, "draft": True,
    })
    assert pr.id == 9
    assert pr.status == "merged"
    assert pr.is_draft is True
    assert pr.created_by == "octocat"


def test_repository_from_api():
    repo = Repository.from_api({"id": "r", "name": "app", "project": {"name": "P"}})
    assert repo.project == "P"
    assert repo.default_branch is None


def test_work_item_from_api():
    item = WorkItem.from_api({"id": 1, "fields": {
        "System.WorkItemType": "Bug", "System.Title": "Crash", "System.State": "New",
    }})
    assert (item.type, item.title, item.state) == ("Bug", "Crash", "New")


def test_pipeline_url_falls_back():
    assert Pipeline.from_api({"id": 1, "name": "ci", "url": "u"}).url == "u"
