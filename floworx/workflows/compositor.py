"""
Multi-service workflow composition.

A business running several verticals gets one workflow: a shared trigger
and classifier, a router on the detected business type, and one responder
per type feeding a shared label step.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from itertools import combinations
from typing import Any

from floworx.observability.logging import get_logger
from floworx.observability.telemetry import log_event
from floworx.schemas.loader import SchemaNotFoundError, get_schema_loader
from floworx.workflows.injector import load_template

logger = get_logger(__name__)

SYSTEM_VERSION = "2.0"

COMPATIBILITY_MATRIX: dict[str, tuple[str, ...]] = {
    "Pools": ("Hot tub & Spa", "Sauna & Icebath"),
    "Hot tub & Spa": ("Pools", "Sauna & Icebath"),
    "Sauna & Icebath": ("Pools", "Hot tub & Spa"),
    "Electrician": ("HVAC", "Plumber", "General Construction"),
    "HVAC": ("Electrician", "Plumber", "General Construction"),
    "Plumber": ("Electrician", "HVAC", "General Construction"),
    "General Construction": ("Flooring", "Painting", "Roofing", "Insulation & Foam Spray"),
    "Flooring": ("General Construction", "Painting"),
    "Painting": ("General Construction", "Flooring"),
    "Roofing": ("General Construction", "Insulation & Foam Spray"),
}

UNIFIED = "unified"
HYBRID = "hybrid"
MODULAR = "modular"

_MATRIX_KEYS = {name.lower(): name for name in COMPATIBILITY_MATRIX} | {
    name.lower(): name for names in COMPATIBILITY_MATRIX.values() for name in names
}


def compatibility_key(business_type: str) -> str:
    """
    Table key for an id, display name or alias. Names already in the table
    are kept so sub-verticals like ``Hot tub & Spa`` stay distinct; others go
    through the schema registry. Unknown names are used as given.
    """
    name = (business_type or "").strip()
    if name.lower() in _MATRIX_KEYS:
        return _MATRIX_KEYS[name.lower()]
    try:
        return get_schema_loader().get_compatibility_key(name)
    except SchemaNotFoundError:
        logger.debug("No compatibility entry for business type %s", name)
        return name


def calculate_compatibility(business_types: list[str]) -> float:
    """
    Mean pairwise compatibility (0-100). Pairs are ordered: (a, b) scores
    100 when b is in a's list or both name the same vertical. Fewer than two
    types scores 0.
    """
    keys = [compatibility_key(business_type) for business_type in business_types]
    pairs = list(combinations(keys, 2))
    if not pairs:
        return 0
    total = sum(100 if a == b or b in COMPATIBILITY_MATRIX.get(a, ()) else 0 for a, b in pairs)
    return total / len(pairs)


def determine_composition_strategy(business_types: list[str]) -> str:
    score = calculate_compatibility(business_types)
    if score >= 70:
        return UNIFIED
    if score >= 40:
        return HYBRID
    return MODULAR


def _connect(target: str) -> list[dict[str, Any]]:
    return [{"node": target, "type": "main", "index": 0}]


class CompositeTemplateBuilder:
    def __init__(self, provider: str = "gmail"):
        self.provider = provider
        self._node_counter = 0

    def _node_id(self, prefix: str) -> str:
        node_id = f"{prefix}-{self._node_counter}"
        self._node_counter += 1
        return node_id

    def build(self, business_types: list[str], metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Raises:
            ValueError: business_types is empty
        """
        if not business_types:
            raise ValueError("business_types must be a non-empty list")
        metadata = dict(metadata or {})

        if len(business_types) == 1:
            return {
                "type": "single",
                "businessType": business_types[0],
                "businessTypes": list(business_types),
                "template": load_template(self.provider),
                "metadata": {
                    **metadata,
                    "source": "single_business",
                    "systemVersion": SYSTEM_VERSION,
                    "isComposite": False,
                },
            }

        strategy = determine_composition_strategy(business_types)
        # hybrid and modular currently produce the unified graph
        workflow = self._build_unified(business_types)
        workflow["metadata"] = {
            **metadata,
            "businessTypes": list(business_types),
            "primaryType": business_types[0],
            "secondaryTypes": list(business_types[1:]),
            "compositionStrategy": strategy,
            "composedAt": datetime.now(UTC).isoformat(),
            "systemVersion": SYSTEM_VERSION,
            "isComposite": True,
        }
        log_event(
            "workflows.composed",
            business_types=list(business_types),
            strategy=strategy,
            nodes=len(workflow["nodes"]),
        )
        return workflow

    def _build_unified(self, business_types: list[str]) -> dict[str, Any]:
        self._node_counter = 0
        joined = " + ".join(business_types)

        trigger = {
            "id": self._node_id("gmail-trigger"),
            "name": "Gmail Trigger: New Email",
            "type": "n8n-nodes-base.gmailTrigger",
            "typeVersion": 1.2,
            "position": [240, 300],
            "parameters": {
                "pollTimes": {"item": [{"mode": "everyMinute"}]},
                "simple": False,
                "filters": {"labelIds": ["INBOX"], "includeSpamTrash": False},
            },
        }
        fetch_config = {
            "id": self._node_id("fetch-config"),
            "name": "Fetch Business Config",
            "type": "n8n-nodes-base.code",
            "typeVersion": 2,
            "position": [460, 300],
            "parameters": {
                "jsCode": (
                    "const domain = String($json.to?.text || '').split('@')[1] || '';\n"
                    "return [{ json: { ...$json, businessDomain: domain, businessTypes: "
                    f"{json.dumps(business_types)} }} }}];"
                )
            },
        }
        classifier = {
            "id": self._node_id("ai-classifier"),
            "name": "AI Multi-Service Classifier",
            "type": "@n8n/n8n-nodes-langchain.agent",
            "typeVersion": 1.7,
            "position": [680, 300],
            "parameters": {
                "promptType": "define",
                "text": "=Subject: {{ $json.subject }}\nFrom: {{ $json.from?.text }}\n\n{{ $json.text }}",
                "options": {
                    "systemMessage": (
                        "You are an expert email classification agent for a multi-service "
                        f"business offering: {', '.join(business_types)}.\n\n"
                        "Output a JSON object with: businessType (one of "
                        f"{', '.join(business_types)}), summary, primary_category, "
                        "secondary_category, confidence (0.0-1.0), ai_can_reply, entities."
                    )
                },
            },
        }
        router = {
            "id": self._node_id("business-router"),
            "name": "Route by Business Type",
            "type": "n8n-nodes-base.switch",
            "typeVersion": 3,
            "position": [900, 300],
            "parameters": {
                "dataPropertyName": "businessType",
                "rules": {
                    "rules": [
                        {"value": business_type, "output": index}
                        for index, business_type in enumerate(business_types)
                    ]
                },
            },
        }
        responders = [
            {
                "id": self._node_id(f"{business_type.lower().replace(' ', '-')}-responder"),
                "name": f"{business_type} Service Responder",
                "type": "@n8n/n8n-nodes-langchain.agent",
                "typeVersion": 1.7,
                "position": [1120, 200 + index * 200],
                "parameters": {
                    "promptType": "define",
                    "text": "=Original Email: {{ $json.text }}\nClassification: {{ $json.primary_category }}",
                    "options": {
                        "systemMessage": (
                            f"You are the AI assistant for {business_type} services. "
                            "Generate professional email responses."
                        )
                    },
                },
            }
            for index, business_type in enumerate(business_types)
        ]
        labeler = {
            "id": self._node_id("label-applicator"),
            "name": "Apply Multi-Service Labels",
            "type": "n8n-nodes-base.gmail",
            "typeVersion": 2.1,
            "position": [1340, 300],
            "parameters": {
                "resource": "message",
                "operation": "addLabels",
                "messageId": "={{ $json.id }}",
                "labelIds": "={{ $json.labelIds }}",
            },
        }
        analytics = {
            "id": self._node_id("analytics"),
            "name": "Log Multi-Service Analytics",
            "type": "n8n-nodes-base.code",
            "typeVersion": 2,
            "position": [1560, 300],
            "parameters": {
                "jsCode": (
                    "return [{ json: { threadId: $json.threadId, businessType: $json.businessType, "
                    "classification: $json.primary_category, confidence: $json.confidence } }];"
                )
            },
        }

        connections: dict[str, Any] = {
            trigger["name"]: {"main": [_connect(fetch_config["name"])]},
            fetch_config["name"]: {"main": [_connect(classifier["name"])]},
            classifier["name"]: {"main": [_connect(router["name"])]},
            router["name"]: {"main": [_connect(responder["name"]) for responder in responders]},
            labeler["name"]: {"main": [_connect(analytics["name"])]},
        }
        for responder in responders:
            connections[responder["name"]] = {"main": [_connect(labeler["name"])]}

        return {
            "name": f"{joined} Multi-Service Automation Workflow",
            "type": "composite",
            "nodes": [trigger, fetch_config, classifier, router, *responders, labeler, analytics],
            "connections": connections,
            "settings": {
                "executionOrder": "v1",
                "saveManualExecutions": True,
                "callersPolicy": "workflowsFromSameOwner",
            },
            "tags": [
                {
                    "id": f"composite-{'-'.join(business_types).lower()}",
                    "name": f"Multi-Service: {', '.join(business_types)}",
                }
            ],
        }


def build_composite_template(
    business_types: list[str],
    metadata: dict[str, Any] | None = None,
    provider: str = "gmail",
) -> dict[str, Any]:
    return CompositeTemplateBuilder(provider).build(business_types, metadata)
