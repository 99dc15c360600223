"""
Master label schema and per-business label schemas.

The standard label tree lives in the base schema's ``systemLabels``. A label
schema for one business type is the standard tree plus that vertical's
industry labels, in provisioning order, with ``{{ManagerN}}`` and
``{{SupplierN}}`` placeholders resolved against the business's team.
"""

from __future__ import annotations

import copy
import re
from typing import Any

from floworx.schemas.loader import get_schema_loader

MANAGER_PLACEHOLDER = re.compile(r"\{\{Manager(\d+)\}\}")
SUPPLIER_PLACEHOLDER = re.compile(r"\{\{Supplier(\d+)\}\}")
ANY_PLACEHOLDER = re.compile(r"\{\{(Manager|Supplier)\d+\}\}")


def get_base_label_schema() -> dict[str, Any]:
    """The standard label tree shared by every business type."""
    base = get_schema_loader().load_base_schema()
    return {
        "meta": {
            "schemaVersion": base["schemaVersion"],
            "industry": "base",
            "author": base.get("author"),
            "lastUpdated": base.get("lastUpdated"),
            "source": "base",
        },
        "description": base.get("description"),
        "rootOrder": list(base.get("provisioningOrder", [])),
        "labels": base.get("systemLabels", []),
        "defaultIntents": base.get("defaultIntents", {}),
        "dynamicVariables": base.get("dynamicVariables", {}),
    }


def _team_name(member: Any) -> str:
    if isinstance(member, dict):
        return (member.get("name") or "").strip()
    return str(member or "").strip()


def _resolve_name(name: str, managers: list[str], suppliers: list[str]) -> str | None:
    """Substitute placeholders in one label name; None when one has no match."""

    def lookup(pattern: re.Pattern[str], names: list[str], text: str) -> str | None:
        unresolved = False

        def substitute(match: re.Match[str]) -> str:
            nonlocal unresolved
            index = int(match.group(1)) - 1
            if 0 <= index < len(names) and names[index]:
                return names[index]
            unresolved = True
            return match.group(0)

        result = pattern.sub(substitute, text)
        return None if unresolved else result

    resolved = lookup(MANAGER_PLACEHOLDER, managers, name)
    if resolved is None:
        return None
    return lookup(SUPPLIER_PLACEHOLDER, suppliers, resolved)


def _replace_in_labels(
    labels: list[dict[str, Any]], managers: list[str], suppliers: list[str]
) -> list[dict[str, Any]]:
    result = []
    for label in labels:
        name = label.get("name", "")
        if ANY_PLACEHOLDER.search(name):
            resolved = _resolve_name(name, managers, suppliers)
            if resolved is None:
                continue
            label = {**label, "name": resolved}
        if label.get("sub"):
            label = {**label, "sub": _replace_in_labels(label["sub"], managers, suppliers)}
        result.append(label)
    return result


def fill_team_names(
    names: list[str], managers: list[Any] | None = None, suppliers: list[Any] | None = None
) -> list[str]:
    """Label names with team placeholders filled; names with no matching member are dropped."""
    manager_names = [_team_name(m) for m in managers or []]
    supplier_names = [_team_name(s) for s in suppliers or []]
    filled = []
    for name in names:
        if ANY_PLACEHOLDER.search(name):
            resolved = _resolve_name(name, manager_names, supplier_names)
            if resolved is None:
                continue
            name = resolved
        filled.append(name)
    return filled


def replace_dynamic_variables(
    schema: dict[str, Any],
    managers: list[Any] | None = None,
    suppliers: list[Any] | None = None,
) -> dict[str, Any]:
    """
    Return a copy of a label schema with team placeholders filled in.

    ``{{ManagerN}}`` becomes the N-th manager's name and ``{{SupplierN}}`` the
    N-th supplier's name. Labels whose placeholder has no matching team member
    are dropped. The input schema is never mutated.

    Args:
        schema: Label schema with a ``labels`` list
        managers: Manager dicts (with ``name``) or plain strings
        suppliers: Supplier dicts (with ``name``) or plain strings
    """
    result = copy.deepcopy(schema)
    manager_names = [_team_name(m) for m in managers or []]
    supplier_names = [_team_name(s) for s in suppliers or []]
    result["labels"] = _replace_in_labels(result.get("labels", []), manager_names, supplier_names)
    return result


def get_complete_schema_for_business(
    business_type: str,
    managers: list[Any] | None = None,
    suppliers: list[Any] | None = None,
) -> dict[str, Any]:
    """
    Label schema for a single business type with the team already injected.

    Raises:
        SchemaNotFoundError: Unknown business type
        SchemaValidationError: The vertical's schema is invalid
    """
    schema = get_schema_loader().load_schema(business_type)

    root_order = list(schema.get("provisioningOrder", []))
    for label in schema.get("labels", []):
        if label["name"] not in root_order:
            root_order.append(label["name"])

    label_schema = {
        "meta": {
            "schemaVersion": schema.get("schemaVersion"),
            "industry": schema.get("displayName"),
            "businessType": schema["businessType"],
            "author": schema.get("author"),
            "lastUpdated": schema.get("lastUpdated"),
            "source": "single",
        },
        "description": schema.get("description"),
        "rootOrder": root_order,
        "labels": schema.get("labels", []),
        "dynamicVariables": schema.get("dynamicVariables", {}),
        "specialRules": schema.get("specialRules", []),
        "autoReplyRules": schema.get("autoReplyRules", {}),
        "domainDetection": schema.get("domainDetection", {}),
    }
    return replace_dynamic_variables(label_schema, managers, suppliers)
