"""
Label schema merger for businesses that run more than one business type.

Standard categories are deduplicated (their sub-labels merged by name);
industry categories from each vertical are appended once, after the standard
ones.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import Any

from floworx.config import DEFAULT_BUSINESS_TYPE
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import log_event
from floworx.schemas.labels_base import get_base_label_schema, get_complete_schema_for_business
from floworx.schemas.loader import SchemaNotFoundError, SchemaValidationError

logger = get_logger(__name__)

STANDARD_CATEGORIES = frozenset(
    {
        "BANKING",
        "FORMSUB",
        "GOOGLE_REVIEW",
        "MANAGER",
        "SALES",
        "SUPPLIERS",
        "SUPPORT",
        "URGENT",
        "MISC",
        "PHONE",
        "PROMO",
        "RECRUITMENT",
        "SOCIALMEDIA",
    }
)


def category_key(name: str) -> str:
    """'Google Review' and 'GOOGLE_REVIEW' compare equal."""
    return name.strip().upper().replace(" ", "_")


def is_standard_category(name: str) -> bool:
    return category_key(name) in STANDARD_CATEGORIES


def get_schema_for_business_type(
    business_type: str,
    managers: list[Any] | None = None,
    suppliers: list[Any] | None = None,
) -> dict[str, Any] | None:
    """Label schema for one type, or None (with a warning) when it cannot be loaded."""
    try:
        return get_complete_schema_for_business(business_type, managers, suppliers)
    except (SchemaNotFoundError, SchemaValidationError) as e:
        logger.warning("Could not load label schema for %s: %s", business_type, e)
        return None


def merge_subcategories(sub_lists: list[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Merge sub-label lists by name, recursing into nested subs."""
    seen: dict[str, dict[str, Any]] = {}
    merged: list[dict[str, Any]] = []

    for sub_list in sub_lists:
        for sub_label in sub_list or []:
            name = sub_label.get("name")
            existing = seen.get(name)
            if existing is None:
                clone = copy.deepcopy(sub_label)
                seen[name] = clone
                merged.append(clone)
            elif sub_label.get("sub"):
                if existing.get("sub"):
                    existing["sub"] = merge_subcategories([existing["sub"], sub_label["sub"]])
                else:
                    existing["sub"] = copy.deepcopy(sub_label["sub"])
    return merged


def merge_labels(schemas: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Standard labels first (deduplicated, subs merged), then unique industry labels."""
    standard: dict[str, dict[str, Any]] = {}
    industry: list[dict[str, Any]] = []
    industry_names: set[str] = set()

    for schema in schemas:
        for label in schema.get("labels") or []:
            name = label.get("name", "")
            if is_standard_category(name):
                key = category_key(name)
                existing = standard.get(key)
                if existing is None:
                    standard[key] = copy.deepcopy(label)
                elif label.get("sub"):
                    if existing.get("sub"):
                        existing["sub"] = merge_subcategories([existing["sub"], label["sub"]])
                    else:
                        existing["sub"] = copy.deepcopy(label["sub"])
            elif name not in industry_names:
                industry_names.add(name)
                industry.append(copy.deepcopy(label))

    return [*standard.values(), *industry]


def merge_root_order(schemas: list[dict[str, Any]]) -> list[str]:
    """Base provisioning order followed by industry categories in first-seen order."""
    base_order = get_base_label_schema()["rootOrder"]
    industry: list[str] = []

    for schema in schemas:
        for category in schema.get("rootOrder") or []:
            if is_standard_category(category) or category in base_order or category in industry:
                continue
            industry.append(category)

    return [*base_order, *industry]


def merge_dynamic_variables(schemas: list[dict[str, Any]]) -> dict[str, list[str]]:
    managers: set[str] = set()
    suppliers: set[str] = set()
    for schema in schemas:
        variables = schema.get("dynamicVariables") or {}
        managers.update(variables.get("managers", []))
        suppliers.update(variables.get("suppliers", []))
    return {"managers": sorted(managers), "suppliers": sorted(suppliers)}


def merge_special_rules(schemas: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Rules keyed by name; a repeated rule gains the union of trigger keywords."""
    rules: dict[str, dict[str, Any]] = {}

    for schema in schemas:
        for rule in schema.get("specialRules") or []:
            existing = rules.get(rule["name"])
            if existing is None:
                rules[rule["name"]] = copy.deepcopy(rule)
                continue
            keywords = (rule.get("trigger") or {}).get("keywords_in_body")
            if keywords:
                trigger = existing.setdefault("trigger", {})
                current = trigger.get("keywords_in_body") or []
                trigger["keywords_in_body"] = list(dict.fromkeys([*current, *keywords]))

    return list(rules.values())


def merge_auto_reply_rules(schemas: list[dict[str, Any]]) -> dict[str, Any]:
    """
    The most restrictive confidence wins; categories and conditions are unioned.
    """
    min_confidence = 0.75
    categories = ["Support", "Sales", "Urgent"]
    conditions: list[dict[str, Any]] = []

    for schema in schemas:
        rules = schema.get("autoReplyRules")
        if not rules:
            continue
        if rules.get("minConfidence", 0) > min_confidence:
            min_confidence = rules["minConfidence"]
        for category in rules.get("enabledCategories") or []:
            if category not in categories:
                categories.append(category)
        for condition in rules.get("conditions") or []:
            if not any(c.get("rule") == condition.get("rule") for c in conditions):
                conditions.append(copy.deepcopy(condition))

    return {
        "enabled": True,
        "minConfidence": min_confidence,
        "enabledCategories": categories,
        "conditions": conditions,
    }


def merge_domain_detection(schemas: list[dict[str, Any]]) -> dict[str, list[Any]]:
    suppliers: list[dict[str, Any]] = []
    phone_providers: list[dict[str, Any]] = []
    internal_domains: list[str] = []
    seen_suppliers: set[str] = set()
    seen_phone: set[str] = set()

    for schema in schemas:
        detection = schema.get("domainDetection") or {}
        for supplier in detection.get("suppliers") or []:
            key = supplier.get("name", "") + ",".join(supplier.get("domains") or [])
            if key not in seen_suppliers:
                seen_suppliers.add(key)
                suppliers.append(copy.deepcopy(supplier))
        for provider in detection.get("phoneProviders") or []:
            if provider.get("email") not in seen_phone:
                seen_phone.add(provider.get("email"))
                phone_providers.append(copy.deepcopy(provider))
        for domain in detection.get("internalDomains") or []:
            if domain not in internal_domains:
                internal_domains.append(domain)

    return {
        "suppliers": suppliers,
        "phoneProviders": phone_providers,
        "internalDomains": internal_domains,
    }


def merge_business_type_schemas(
    business_types: list[str] | None,
    managers: list[Any] | None = None,
    suppliers: list[Any] | None = None,
) -> dict[str, Any]:
    """
    Unified label schema for one or more business types.

    No types falls back to the default business type. A single type returns
    its own schema. Unknown types are skipped; if none load, the default type
    is used.

    Side Effects:
        - Emits a schemas.labels_merged telemetry event for multi-type merges
    """
    if not business_types:
        logger.warning("No business types provided, using %s", DEFAULT_BUSINESS_TYPE)
        return get_complete_schema_for_business(DEFAULT_BUSINESS_TYPE, managers, suppliers)

    if len(business_types) == 1:
        schema = get_schema_for_business_type(business_types[0], managers, suppliers)
        return schema or get_complete_schema_for_business(DEFAULT_BUSINESS_TYPE, managers, suppliers)

    schemas = [
        schema
        for schema in (get_schema_for_business_type(t, managers, suppliers) for t in business_types)
        if schema is not None
    ]
    if not schemas:
        logger.warning("No valid schemas for business types: %s", business_types)
        return get_complete_schema_for_business(DEFAULT_BUSINESS_TYPE, managers, suppliers)

    merged = {
        "meta": {
            "schemaVersion": "v3.0",
            "industry": " + ".join(business_types),
            "author": "FloWorx label schema merger",
            "lastUpdated": datetime.now(UTC).isoformat(),
            "source": "merged",
            "sourceBusinessTypes": list(business_types),
        },
        "description": f"Merged label schema for {' and '.join(business_types)} businesses",
        "rootOrder": merge_root_order(schemas),
        "labels": merge_labels(schemas),
        "dynamicVariables": merge_dynamic_variables(schemas),
        "specialRules": merge_special_rules(schemas),
        "autoReplyRules": merge_auto_reply_rules(schemas),
        "domainDetection": merge_domain_detection(schemas),
    }

    log_event(
        "schemas.labels_merged",
        business_types=list(business_types),
        labels=len(merged["labels"]),
        special_rules=len(merged["specialRules"]),
    )
    return merged


def get_merged_schema_from_profile(profile: dict[str, Any]) -> dict[str, Any]:
    """Accepts ``business_types`` (list) or the legacy ``business_type`` string."""
    business_types: list[str] = []
    if isinstance(profile.get("business_types"), list):
        business_types = profile["business_types"]
    elif profile.get("business_type"):
        business_types = [profile["business_type"]]

    return merge_business_type_schemas(
        business_types, profile.get("managers") or [], profile.get("suppliers") or []
    )


def validate_merged_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Check a merged schema for duplicate top-level label names."""
    labels = schema.get("labels")
    if not isinstance(labels, list):
        return {"is_valid": False, "duplicates": ["No labels array found"]}

    seen: set[str] = set()
    duplicates: list[str] = []
    for label in labels:
        if label["name"] in seen:
            duplicates.append(label["name"])
        seen.add(label["name"])
    return {"is_valid": not duplicates, "duplicates": duplicates}
