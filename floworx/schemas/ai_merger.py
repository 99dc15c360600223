"""
AI schema merger.

Combines the full AI configuration (keywords, intent routing, tone, labels,
escalation rules, prompts) of several business types into one schema that
the classifier and reply prompts are generated from.
"""

from __future__ import annotations

import copy
import re
from datetime import UTC, datetime
from typing import Any

from floworx.observability.logging import get_logger
from floworx.observability.telemetry import log_event
from floworx.schemas.label_merger import category_key, merge_dynamic_variables
from floworx.schemas.loader import SchemaNotFoundError, SchemaValidationError, get_schema_loader

logger = get_logger(__name__)

KEYWORD_BUCKETS = ("primary", "secondary", "emergency", "service", "financial", "warranty", "negative")
ESCALATION_TYPES = ("urgent", "warranty", "service", "sales")

LEADING_ORDER = (
    "BANKING",
    "FORMSUB",
    "GOOGLE_REVIEW",
    "MANAGER",
    "SERVICE",
    "WARRANTY",
    "SUPPORT",
    "SALES",
    "SUPPLIERS",
    "URGENT",
)
TRAILING_ORDER = ("PHONE", "PROMO", "RECRUITMENT", "SOCIALMEDIA", "MISC")

DEFAULT_LABEL_COLOR = {"backgroundColor": "#999999", "textColor": "#ffffff"}
UNPARSEABLE_SLA_MINUTES = 999

_SLA_PATTERN = re.compile(r"(\d+)\s*(minute|hour)", re.IGNORECASE)


def get_ai_schema_for_business_type(business_type: str) -> dict[str, Any] | None:
    try:
        return get_schema_loader().load_schema(business_type)
    except (SchemaNotFoundError, SchemaValidationError) as e:
        logger.warning("Could not load AI schema for %s: %s", business_type, e)
        return None


def merge_keywords(schemas: list[dict[str, Any]]) -> dict[str, list[str]]:
    merged: dict[str, list[str]] = {bucket: [] for bucket in KEYWORD_BUCKETS}
    for schema in schemas:
        for bucket, keywords in (schema.get("keywords") or {}).items():
            if bucket not in merged or not isinstance(keywords, list):
                continue
            for keyword in keywords:
                if keyword not in merged[bucket]:
                    merged[bucket].append(keyword)
    return merged


def merge_intent_routing(base: dict[str, Any], schemas: list[dict[str, Any]]) -> dict[str, str]:
    """Base routing plus any intent a vertical adds; the first vertical to claim an intent wins."""
    merged = dict(base.get("intentRouting") or {})
    for schema in schemas:
        for intent, label in (schema.get("intentRouting") or {}).items():
            merged.setdefault(intent, label)
    return merged


def merge_tone_profiles(base: dict[str, Any], schemas: list[dict[str, Any]]) -> dict[str, Any]:
    base_tone = base.get("toneProfile") or {}
    if not schemas:
        return copy.deepcopy(base_tone)

    primary_tone = schemas[0].get("toneProfile") or {}
    tones = [s["toneProfile"]["primary"] for s in schemas if (s.get("toneProfile") or {}).get("primary")]

    if len(tones) > 1:
        blended = " and ".join(tones[:2])
        if len(tones) > 2:
            blended += " with multi-service expertise"
    else:
        blended = primary_tone.get("primary") or base_tone.get("primary")

    return {
        "primary": blended,
        "style": primary_tone.get("style") or base_tone.get("style"),
    }


def _to_label_config(label: dict[str, Any]) -> dict[str, Any]:
    subs = label.get("sub") or []
    config: dict[str, Any] = {
        "intent": label.get("intent"),
        "critical": bool(label.get("critical", False)),
        "sub": [sub["name"] for sub in subs],
    }
    nested = {sub["name"]: [n["name"] for n in sub["sub"]] for sub in subs if sub.get("sub")}
    if nested:
        config["nested"] = nested
    if label.get("n8nEnvVar"):
        config["n8nEnvVar"] = label["n8nEnvVar"]
    if label.get("description"):
        config["description"] = label["description"]
    return config


def merge_label_schemas(schemas: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Object-format label schema: ``labels`` keyed by name, ``colors`` keyed by
    name, and a provisioning order that puts the standard leading categories
    first and the low-priority ones last.
    """
    labels: dict[str, dict[str, Any]] = {}
    colors: dict[str, dict[str, str]] = {}

    for schema in schemas:
        for label in schema.get("labels") or []:
            name = label["name"]
            if label.get("color"):
                colors[name] = label["color"]
            config = _to_label_config(label)
            existing = labels.get(name)
            if existing is None:
                labels[name] = config
                continue
            existing["sub"] = list(dict.fromkeys([*existing["sub"], *config["sub"]]))
            if config.get("nested"):
                existing["nested"] = {**existing.get("nested", {}), **config["nested"]}

    by_key = {category_key(name): name for name in labels}
    leading = [by_key[key] for key in LEADING_ORDER if key in by_key]
    trailing = [by_key[key] for key in TRAILING_ORDER if key in by_key]
    fixed = set(leading) | set(trailing)
    industry = [name for name in labels if name not in fixed]

    return {
        "labels": labels,
        "colors": colors,
        "provisioningOrder": [*leading, *industry, *trailing],
    }


def _sla_minutes(sla: str | None) -> int:
    match = _SLA_PATTERN.search(sla or "")
    if not match:
        return UNPARSEABLE_SLA_MINUTES
    value = int(match.group(1))
    return value * 60 if match.group(2).lower() == "hour" else value


def merge_escalation_rules(schemas: list[dict[str, Any]]) -> dict[str, Any]:
    """Shortest SLA wins per escalation type; notify lists are unioned."""
    merged: dict[str, Any] = {}
    for escalation_type in ESCALATION_TYPES:
        rules = [
            s["escalationRules"][escalation_type]
            for s in schemas
            if (s.get("escalationRules") or {}).get(escalation_type)
        ]
        if not rules:
            continue
        best = min(rules, key=lambda r: _sla_minutes(r.get("sla")))
        notify: list[str] = []
        for rule in rules:
            for recipient in rule.get("notify") or []:
                if recipient not in notify:
                    notify.append(recipient)
        merged[escalation_type] = {**copy.deepcopy(best), "notify": notify}
    return merged


def merge_ai_prompts(
    base: dict[str, Any], schemas: list[dict[str, Any]], business_types: list[str]
) -> dict[str, Any]:
    base_prompts = base.get("aiPrompts") or {}
    if not schemas:
        return copy.deepcopy(base_prompts)

    primary = schemas[0].get("aiPrompts") or {}
    rules: list[str] = []
    for schema in schemas:
        for rule in (schema.get("aiPrompts") or {}).get("classificationRules") or []:
            if rule not in rules:
                rules.append(rule)

    classification_prompt = primary.get("classificationPrompt") or base_prompts.get(
        "classificationPrompt", ""
    )
    reply_prompt = primary.get("replyPrompt") or base_prompts.get("replyPrompt", "")
    if len(business_types) > 1:
        classification_prompt = classification_prompt.replace(
            "{{BUSINESS_NAME}}",
            f"{{{{BUSINESS_NAME}}}} ({' + '.join(business_types)} services)",
        )
        reply_prompt += (
            f"\n\nNote: We provide {', '.join(business_types)} services. Tailor your "
            "response to the specific service area mentioned in the customer's email."
        )

    return {
        "classificationPrompt": classification_prompt,
        "replyPrompt": reply_prompt,
        "classificationRules": rules,
    }


def merge_ai_schemas(business_types: list[str] | None) -> dict[str, Any]:
    """
    Merge the AI schemas of several business types.

    No types returns the base schema; a single type returns its own merged
    schema. Types that fail to load are skipped.

    Side Effects:
        - Emits a schemas.ai_merged telemetry event for multi-type merges
    """
    loader = get_schema_loader()
    base = loader.load_base_schema()

    if not business_types:
        logger.warning("No business types provided, using base AI schema")
        return base

    if len(business_types) == 1:
        return get_ai_schema_for_business_type(business_types[0]) or base

    schemas = [
        schema
        for schema in (get_ai_schema_for_business_type(t) for t in business_types)
        if schema is not None
    ]
    if not schemas:
        logger.warning("No valid AI schemas for business types: %s", business_types)
        return base

    joined = " + ".join(business_types)
    merged = {
        "schemaVersion": base["schemaVersion"],
        "businessType": joined,
        "displayName": f"{joined} Business",
        "description": (
            f"Merged AI schema for multi-business type: {', '.join(business_types)}."
        ),
        "updatedAt": datetime.now(UTC).isoformat(),
        "author": "FloWorx AI schema merger",
        "metadata": {
            "industry": joined,
            "sourceBusinessTypes": list(business_types),
            "serviceCategories": [c for s in schemas for c in s.get("serviceCategories", [])],
        },
        "toneProfile": merge_tone_profiles(base, schemas),
        "confidenceThreshold": max(s.get("confidenceThreshold", 0.75) for s in schemas),
        "fallbackLabel": "MISC",
        "intentRouting": merge_intent_routing(base, schemas),
        "keywords": merge_keywords(schemas),
        "labelSchema": merge_label_schemas(schemas),
        "dynamicVariables": merge_dynamic_variables(schemas),
        "escalationRules": merge_escalation_rules(schemas),
        "aiPrompts": merge_ai_prompts(base, schemas, business_types),
    }

    log_event(
        "schemas.ai_merged",
        business_types=list(business_types),
        labels=len(merged["labelSchema"]["labels"]),
        intents=len(merged["intentRouting"]),
    )
    return merged


def get_merged_ai_schema_from_profile(profile: dict[str, Any]) -> dict[str, Any]:
    business_types: list[str] = []
    if isinstance(profile.get("business_types"), list):
        business_types = profile["business_types"]
    elif profile.get("business_type"):
        business_types = [profile["business_type"]]
    return merge_ai_schemas(business_types)


def extract_label_schema(ai_schema: dict[str, Any]) -> dict[str, Any] | None:
    """
    Convert a merged AI schema's object-format ``labelSchema`` into the
    array-format label schema used for provisioning.
    """
    label_schema = ai_schema.get("labelSchema")
    if not label_schema:
        logger.warning("No labelSchema found in AI schema")
        return None

    colors = label_schema.get("colors") or {}
    labels = []
    for name, config in (label_schema.get("labels") or {}).items():
        label: dict[str, Any] = {
            "name": name,
            "intent": config.get("intent"),
            "critical": config.get("critical", False),
            "color": colors.get(name, dict(DEFAULT_LABEL_COLOR)),
        }
        if config.get("n8nEnvVar"):
            label["n8nEnvVar"] = config["n8nEnvVar"]
        nested = config.get("nested") or {}
        if config.get("sub"):
            label["sub"] = []
            for sub_name in config["sub"]:
                sub: dict[str, Any] = {"name": sub_name}
                if sub_name in nested:
                    sub["sub"] = [{"name": n} for n in nested[sub_name]]
                label["sub"].append(sub)
        labels.append(label)

    return {
        "meta": {
            "schemaVersion": "v2.0",
            "industry": (ai_schema.get("metadata") or {}).get("industry", ai_schema.get("businessType")),
            "author": "Extracted from AI schema",
            "lastUpdated": ai_schema.get("updatedAt") or datetime.now(UTC).isoformat(),
        },
        "description": ai_schema.get("description"),
        "rootOrder": label_schema.get("provisioningOrder") or [label["name"] for label in labels],
        "labels": labels,
        "dynamicVariables": ai_schema.get("dynamicVariables", {}),
    }


def validate_merged_ai_schema(schema: dict[str, Any]) -> dict[str, Any]:
    issues: list[str] = []
    for field in ("businessType", "intentRouting", "labelSchema", "keywords"):
        if not schema.get(field):
            issues.append(f"Missing {field}")

    label_schema = schema.get("labelSchema")
    if label_schema is not None and not (label_schema.get("labels") or {}):
        issues.append("Label schema has no labels")

    targets = list((schema.get("intentRouting") or {}).values())
    if len(targets) != len(set(targets)):
        issues.append("Duplicate intent mappings detected")

    return {"is_valid": not issues, "issues": issues}
