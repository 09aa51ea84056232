"""
Variable group service: single-variable upsert plus YAML sync and export.

The variable-group write endpoint replaces the whole variable map, so every
change is a read-modify-write of the complete group:

1. read the group (one GET),
2. merge the one variable into the fetched map,
3. write the whole group back (one PUT).

A failed read means nothing is written.  A failed write is raised as-is;
nothing is retried.

YAML layout used by :func:`sync_variable_groups_from_yaml` and
:func:`export_variable_group_yaml`::

    variable_groups:
      - name: my-group
        description: optional
        variables:
          PLAIN: some value
          SECRET:
            value: s3cr3t
            secret: true
"""

from __future__ import annotations

import logging
import os

import yaml
from yamllint import linter
from yamllint.config import YamlLintConfig

from .errors import ParameterValidationError, PSUtilitiesError
from .models import SECRET_MASK, Variable, VariableGroup, VariableUpsertResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------

def merge_variable(group: VariableGroup, name: str, value: str,
                   is_secret: bool | None = None) -> tuple[VariableGroup, str]:
    """
    Return a copy of *group* with *name* set to *value*, and the action.

    Name matching is case-sensitive.  A new variable takes *is_secret*
    (False when omitted); an existing one keeps its secret flag unless
    *is_secret* is given.  Every other variable is carried over untouched.

    Returns:
        Tuple (new_group, action) where action is "Added" or "Updated".
    """
    existing = group.variables.get(name)
    action = "Updated" if existing is not None else "Added"

    if existing is not None:
        secret = existing.is_secret if is_secret is None else is_secret
        updated_var = existing.model_copy(update={"value": value, "is_secret": secret})
    else:
        updated_var = Variable(value=value, is_secret=bool(is_secret))

    variables = dict(group.variables)
    variables[name] = updated_var
    return group.model_copy(update={"variables": variables}), action


def upsert_variable(client, group, name, value, is_secret=None) -> VariableUpsertResult:
    """
    Add or update one variable in an existing variable group.

    Args:
        client: A configured :class:`~psutilities.devops_client.DevOpsClient`.
        group: Group id (int or digit string) or group name.
        name: Variable name (non-empty).
        value: New value; may be an empty string.
        is_secret: Secret flag; ``None`` keeps the existing flag.

    Returns:
        VariableUpsertResult; the value is masked for secret variables.
    """
    if not name or not name.strip():
        raise ParameterValidationError("Variable name must not be empty.")
    if value is None:
        raise ParameterValidationError("Variable value must be a string (use '' for empty).")
    current = client.load_variable_group(group)
    merged, action = merge_variable(current, name, str(value), is_secret)
    client.update_variable_group(merged)

    secret = merged.variables[name].is_secret
    logger.info("%s variable '%s' in variable group %s (%s)",
                action, name, current.id, current.name)
    return VariableUpsertResult(
        action=action,
        group_id=current.id,
        group_name=current.name,
        variable_name=name,
        value=SECRET_MASK if secret else str(value),
        is_secret=secret,
    )


# ---------------------------------------------------------------------------
# YAML loading, saving and linting
# ---------------------------------------------------------------------------

def load_yaml(yaml_path):
    """Load and parse a YAML file."""
    with open(yaml_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def save_yaml(data, output_path):
    """Write *data* as block-style YAML, creating parent directories."""
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True,
                       sort_keys=False, width=120)
    return output_path


def lint_yaml(file_path):
    """
    Lint a YAML file using yamllint.

    Uses a relaxed config suitable for machine-generated YAML (long lines
    allowed, document start marker optional).

    Returns:
        Tuple (ok: bool, messages: list[str]).
    """
    config = YamlLintConfig(
        "extends: default\n"
        "rules:\n"
        "  line-length:\n"
        "    max: 250\n"
        "  indentation:\n"
        "    spaces: consistent\n"
        "    indent-sequences: whatever\n"
        "  document-start: disable\n"
        "  truthy: disable\n"
    )
    with open(file_path, "r", encoding="utf-8") as f:
        content = f.read()

    problems = list(linter.run(content, config, filepath=file_path))
    messages = [f"  {p.line}:{p.column} [{p.level}] {p.message} ({p.rule})" for p in problems]
    errors = [p for p in problems if p.level == "error"]
    return len(errors) == 0, messages


def validate_variable_file(data):
    """
    Validate the structure of a variable-group YAML document.

    Returns:
        List of error strings (empty when valid).
    """
    errors = []
    if not isinstance(data, dict) or not isinstance(data.get("variable_groups"), list):
        return ["Top-level 'variable_groups' list is required"]

    for i, entry in enumerate(data["variable_groups"]):
        where = f"variable_groups[{i}]"
        if not isinstance(entry, dict):
            errors.append(f"{where} must be a mapping")
            continue
        if not entry.get("name") and entry.get("id") is None:
            errors.append(f"{where} needs a 'name' or an 'id'")
        variables = entry.get("variables")
        if not isinstance(variables, dict) or not variables:
            errors.append(f"{where} needs a non-empty 'variables' mapping")
            continue
        for var_name, spec in variables.items():
            if isinstance(spec, dict) and "value" not in spec:
                errors.append(f"{where}.variables.{var_name} is missing 'value'")
    return errors


def _parse_variable_spec(spec):
    """Return (value, is_secret) from a YAML variable entry.

    ``value`` is ``None`` only for a mapping entry with ``value: null``,
    which is how exported secrets look.
    """
    if isinstance(spec, dict):
        value = spec.get("value")
        secret = spec.get("secret")
        secret = None if secret is None else bool(secret)
        return (None if value is None else str(value)), secret
    return ("" if spec is None else str(spec)), None


# ---------------------------------------------------------------------------
# Sync / export
# ---------------------------------------------------------------------------

def _upsert_and_track(client, group, var_name, value, secret):
    """
    Upsert one variable and return a result dict with keys:
    group, variable, status, message.
    """
    try:
        result = upsert_variable(client, group, var_name, value, secret)
        return {"group": str(group), "variable": var_name,
                "status": result.action.lower(), "message": f"Group ID: {result.group_id}"}
    except PSUtilitiesError as e:
        logger.warning("Failed to set '%s' in variable group '%s': %s", var_name, group, e)
        return {"group": str(group), "variable": var_name,
                "status": "error", "message": str(e)}


def sync_variable_groups_from_yaml(yaml_path, client):
    """
    Upsert every variable listed in a YAML file into its variable group.

    Groups must already exist.  One failing variable does not stop the
    walk; it is reported with status "error".

    Returns:
        List of result dicts (group, variable, status, message) where
        status is "added", "updated", "skipped" (no value given) or "error".

    Raises:
        ParameterValidationError: if the file does not match the layout.
    """
    data = load_yaml(yaml_path)
    errors = validate_variable_file(data)
    if errors:
        raise ParameterValidationError(
            "Invalid variable file:\n" + "\n".join(f"  - {e}" for e in errors)
        )

    results = []
    for entry in data["variable_groups"]:
        group = entry["id"] if entry.get("id") is not None else entry["name"]
        for var_name, spec in entry["variables"].items():
            value, secret = _parse_variable_spec(spec)
            if value is None:
                # Exported secrets carry no value; leave the server copy alone.
                results.append({"group": str(group), "variable": str(var_name),
                                "status": "skipped", "message": "No value given"})
                continue
            results.append(_upsert_and_track(client, group, str(var_name), value, secret))

    counts = {s: sum(1 for r in results if r["status"] == s)
              for s in ("added", "updated", "skipped", "error")}
    logger.info("Variable sync from %s: %d added, %d updated, %d skipped, %d failed",
                yaml_path, counts["added"], counts["updated"], counts["skipped"], counts["error"])
    return results


def variable_group_to_yaml_structure(group: VariableGroup) -> dict:
    """Convert a group to the YAML layout; secret values are left out."""
    variables: dict = {}
    for name, var in group.variables.items():
        if var.is_secret:
            variables[name] = {"value": None, "secret": True}
        else:
            variables[name] = "" if var.value is None else var.value
    entry: dict = {"name": group.name}
    if group.id is not None:
        entry["id"] = group.id
    if group.description:
        entry["description"] = group.description
    entry["variables"] = variables
    return {"variable_groups": [entry]}


def export_variable_group_yaml(group: VariableGroup, output_path):
    """
    Write *group* to *output_path* in the sync layout and lint it.

    Returns:
        Tuple (output_path, lint_ok, lint_messages).
    """
    save_yaml(variable_group_to_yaml_structure(group), output_path)
    ok, messages = lint_yaml(output_path)
    return output_path, ok, messages
