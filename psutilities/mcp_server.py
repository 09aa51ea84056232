"""
MCP Server exposing PSUtilities operations as tools.

Lets any MCP-compatible client (VS Code Copilot, Claude Desktop, etc.)
manage Azure DevOps variable groups, pull requests, work items and
pipelines, approve/complete pull requests on GitHub or Azure DevOps, and
look up the machine's public IP.

Usage:
    # stdio transport (default – for VS Code / Claude Desktop)
    python -m psutilities.mcp_server

    # SSE transport (for browser / remote clients)
    python -m psutilities.mcp_server --transport sse --port 8000

Environment variables (or .env file): see :mod:`psutilities.config`.
Every tool returns a JSON string; failures come back as
``{"status": "error", "message": ...}``.
"""

from __future__ import annotations

import json
from typing import Optional

from mcp.server.fastmcp import FastMCP

from . import pull_requests
from .config import configure_logging, load_settings
from .devops_client import DevOpsClient
from .errors import PSUtilitiesError
from .network import get_public_ip as _get_public_ip
from .variable_service import (
    export_variable_group_yaml,
    sync_variable_groups_from_yaml,
    upsert_variable,
)

# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

SETTINGS = load_settings()

mcp = FastMCP(
    "PSUtilities",
    dependencies=["requests", "python-dotenv", "pydantic", "pyyaml", "yamllint"],
)

# Singleton client
_client: DevOpsClient | None = None


def _get_client() -> DevOpsClient:
    """Return a shared DevOpsClient configured from settings."""
    global _client
    if _client is None:
        _client = DevOpsClient.from_settings(SETTINGS)
    return _client


def _error(e: Exception) -> str:
    return json.dumps({"status": "error", "message": str(e)})


def _dump(obj) -> str:
    return json.dumps(obj, indent=2, default=str)


# ═══════════════════════════════════════════════════════════════════════════
# Connection / projects
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
def validate_connection() -> str:
    """Test the Azure DevOps connection and return status."""
    ok, message = _get_client().validate_connection()
    return json.dumps({"connected": ok, "message": message})


@mcp.tool()
def get_projects() -> str:
    """List all projects in the Azure DevOps organization."""
    try:
        projects = _get_client().get_projects()
        return _dump({"projects": [p.model_dump() for p in projects], "count": len(projects)})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def get_repositories() -> str:
    """List git repositories in the configured Azure DevOps project."""
    try:
        repos = _get_client().get_repositories()
        return _dump({"repositories": [r.model_dump() for r in repos], "count": len(repos)})
    except PSUtilitiesError as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════════════════════
# Variable groups
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
def get_variable_groups(name: Optional[str] = None) -> str:
    """
    List variable groups in the project.  Secret values are masked.

    Args:
        name: Optional name filter; ``*`` wildcards are allowed.
    """
    try:
        groups = _get_client().get_variable_groups(name)
        return _dump({
            "variable_groups": [
                {"id": g.id, "name": g.name, "description": g.description,
                 "variables": g.plain_values()}
                for g in groups
            ],
            "count": len(groups),
        })
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def get_variable_group(group: str) -> str:
    """
    Get one variable group by numeric id or by name.  Secret values are masked.

    Args:
        group: Group id (e.g. "42") or exact group name.  A digit-only value
            is tried as an id first, then as a name.
    """
    client = _get_client()
    try:
        g = client.load_variable_group(group)
        return _dump({"id": g.id, "name": g.name, "description": g.description,
                      "variables": g.plain_values()})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def create_variable_group(
    name: str,
    variables: dict[str, str],
    description: str = "",
    secret_variables: Optional[list[str]] = None,
) -> str:
    """
    Create a new variable group in the project.

    Args:
        name: Group name.
        variables: Mapping of variable name to value.
        description: Optional description.
        secret_variables: Names from *variables* to store as secrets.
    """
    secret_names = set(secret_variables or [])
    spec = {k: (v, k in secret_names) for k, v in variables.items()}
    try:
        g = _get_client().create_variable_group(name, spec, description)
        return _dump({"status": "created", "id": g.id, "name": g.name,
                      "variables": g.plain_values()})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def set_variable_group(
    group: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> str:
    """
    Rename a variable group and/or change its description.  All variables
    are kept.

    Args:
        group: Group id or current name.
        name: New name.
        description: New description.
    """
    try:
        g = _get_client().set_variable_group(group, name=name, description=description)
        return _dump({"status": "updated", "id": g.id, "name": g.name,
                      "description": g.description})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def set_variable_group_variable(
    group: str,
    variable_name: str,
    value: str,
    is_secret: Optional[bool] = None,
) -> str:
    """
    Add or update one variable in a variable group without touching the
    others.  Reports action "Added" or "Updated".

    Args:
        group: Group id or name.
        variable_name: Variable to set (case-sensitive).
        value: New value (may be empty).
        is_secret: Store as secret.  Omit to keep the current flag
            (new variables default to not secret).
    """
    try:
        result = upsert_variable(_get_client(), group, variable_name, value, is_secret)
        return _dump({"status": "ok", **result.model_dump()})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def sync_variable_groups(yaml_path: str) -> str:
    """
    Upsert every variable listed in a YAML file into existing variable groups.

    Args:
        yaml_path: Path to a file with a top-level ``variable_groups`` list.
    """
    try:
        results = sync_variable_groups_from_yaml(yaml_path, _get_client())
    except (PSUtilitiesError, OSError) as e:
        return _error(e)
    summary = {s: sum(1 for r in results if r["status"] == s)
               for s in ("added", "updated", "skipped", "error")}
    return _dump({"status": "completed", **summary, "details": results})


@mcp.tool()
def export_variable_group(group: str, output_path: str) -> str:
    """
    Save a variable group to a YAML file (secret values are left out).

    Args:
        group: Group id or name.
        output_path: Destination YAML path.
    """
    client = _get_client()
    try:
        g = client.load_variable_group(group)
        path, lint_ok, lint_messages = export_variable_group_yaml(g, output_path)
        return _dump({"status": "exported", "output_path": path,
                      "lint_ok": lint_ok, "lint_messages": lint_messages})
    except (PSUtilitiesError, OSError) as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════════════════════
# Pull requests
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
def get_pull_requests(repository: str, status: str = "active") -> str:
    """
    List Azure DevOps pull requests in a repository.

    Args:
        repository: Repository name or id.
        status: "active", "completed", "abandoned" or "all".
    """
    try:
        prs = _get_client().get_pull_requests(repository, status)
        return _dump({"pull_requests": [p.model_dump() for p in prs], "count": len(prs)})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def create_pull_request(
    repository: str,
    source_branch: str,
    target_branch: str,
    title: str,
    description: str = "",
    is_draft: bool = False,
) -> str:
    """Open an Azure DevOps pull request."""
    try:
        pr = _get_client().create_pull_request(
            repository, source_branch, target_branch, title, description, is_draft
        )
        return _dump({"status": "created", **pr.model_dump()})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def approve_pull_request(pull_request_id: int, remote_url: Optional[str] = None) -> str:
    """
    Approve a pull request on GitHub or Azure DevOps, picked from the git
    remote URL.

    Args:
        pull_request_id: PR number / id.
        remote_url: Git remote URL; defaults to ``origin`` of the current directory.
    """
    try:
        return _dump(pull_requests.approve_pull_request(
            pull_request_id, remote_url, settings=SETTINGS
        ))
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def complete_pull_request(
    pull_request_id: int,
    remote_url: Optional[str] = None,
    merge_strategy: str = "squash",
    delete_source_branch: bool = True,
) -> str:
    """
    Merge/complete a pull request on GitHub or Azure DevOps, picked from
    the git remote URL.

    Args:
        pull_request_id: PR number / id.
        remote_url: Git remote URL; defaults to ``origin`` of the current directory.
        merge_strategy: noFastForward, squash, rebase or rebaseMerge.
        delete_source_branch: Delete the source branch after merging.
    """
    try:
        return _dump(pull_requests.complete_pull_request(
            pull_request_id, remote_url,
            merge_strategy=merge_strategy,
            delete_source_branch=delete_source_branch,
            settings=SETTINGS,
        ))
    except PSUtilitiesError as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════════════════════
# Work items / pipelines
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
def get_work_item(work_item_id: int) -> str:
    """Get a single work item by its numeric ID."""
    try:
        return _dump(_get_client().get_work_item(work_item_id).model_dump())
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def create_work_item(
    work_item_type: str,
    title: str,
    description: str = "",
    parent_id: Optional[int] = None,
    fields: Optional[dict] = None,
) -> str:
    """
    Create a work item.

    Args:
        work_item_type: e.g. "Epic", "User Story", "Task", "Bug".
        title: Work item title.
        description: Plain-text description (converted to HTML).
        parent_id: Optional parent work item ID.
        fields: Extra fields by reference name, e.g. {"System.Tags": "infra"}.
    """
    try:
        item = _get_client().create_work_item(
            work_item_type, title, description or None, fields, parent_id
        )
        return _dump({"status": "created", "id": item.id, "title": item.title,
                      "type": item.type or work_item_type})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def update_work_item(work_item_id: int, fields: dict) -> str:
    """
    Set fields on an existing work item.

    Args:
        work_item_id: Work item ID.
        fields: Field reference name -> new value, e.g. {"System.State": "Active"}.
    """
    try:
        _get_client().update_work_item(work_item_id, fields)
        return json.dumps({"status": "updated", "id": work_item_id,
                           "updated_fields": list(fields.keys())})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def get_pipelines() -> str:
    """List pipelines in the project."""
    try:
        pipelines = _get_client().get_pipelines()
        return _dump({"pipelines": [p.model_dump() for p in pipelines], "count": len(pipelines)})
    except PSUtilitiesError as e:
        return _error(e)


@mcp.tool()
def run_pipeline(pipeline_id: int, branch: Optional[str] = None) -> str:
    """Queue a pipeline run, optionally on a specific branch."""
    try:
        run = _get_client().run_pipeline(pipeline_id, branch)
        return _dump({"status": "queued", **run.model_dump()})
    except PSUtilitiesError as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════════════════════
# Network
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
def get_public_ip(force_refresh: bool = False) -> str:
    """Return this machine's public IP address (cached for five minutes)."""
    try:
        return json.dumps({"ip": _get_public_ip(force_refresh=force_refresh)})
    except PSUtilitiesError as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════════════


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="PSUtilities MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for SSE transport (default: 8000)",
    )
    args = parser.parse_args(argv)

    configure_logging(SETTINGS.log_level)
    if args.transport == "sse":
        mcp.settings.port = args.port
        mcp.run(transport="sse")
    else:
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
