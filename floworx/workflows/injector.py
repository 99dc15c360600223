"""
Workflow template injection.

The bundled Gmail and Outlook templates carry ``<<<PLACEHOLDER>>>`` markers
inside JSON string values. Injection works on the serialized template:
every marker is replaced by a JSON-escaped value and the result is parsed
back, so a value can never break the document structure.
"""

from __future__ import annotations

import copy
import json
import re
import unicodedata
from pathlib import Path
from typing import Any

from floworx.config import N8N_OPENAI_CREDENTIAL_ID
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.prompts.builder import (
    build_classifier_system_message,
    build_reply_system_message,
    build_signature,
    format_service_catalog,
)
from floworx.schemas.ai_merger import merge_ai_schemas
from floworx.storage.integrations import normalize_provider

logger = get_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
PLACEHOLDER_PATTERN = re.compile(r"<<<([A-Z0-9_]+)>>>")

GMAIL_NODE_TYPES = ("n8n-nodes-base.gmailTrigger", "n8n-nodes-base.gmail")
OUTLOOK_NODE_TYPES = ("n8n-nodes-base.microsoftOutlookTrigger", "n8n-nodes-base.microsoftOutlook")
OPENAI_NODE_TYPE = "@n8n/n8n-nodes-langchain.lmChatOpenAi"

_JSON_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}
_STRIPPED_CONTROL = re.compile(r"[\x00-\x07\x0B\x0E-\x1F\x7F-\x9F]")
_NAME_CONTROL = re.compile(r"[\x00-\x1F\x7F-\x9F]")
_ZERO_WIDTH = re.compile(r"[\u200B-\u200D\uFEFF]")

_template_cache: dict[str, dict[str, Any]] = {}


class TemplateInjectionError(ValueError):
    pass


def escape_for_json(value: Any) -> str:
    """Escape a value for use inside a JSON string literal; other control characters are dropped."""
    if value is None:
        return ""
    text = "".join(_JSON_ESCAPES.get(char, char) for char in str(value))
    return _STRIPPED_CONTROL.sub("", text)


def sanitize_for_workflow_name(value: Any) -> str:
    if value is None:
        return ""
    text = _NAME_CONTROL.sub("", str(value)).replace("|", "")
    return re.sub(r"\s+", " ", text).strip()


def sanitize_business_name(value: Any) -> str:
    text = unicodedata.normalize("NFKC", "" if value is None else str(value))
    text = _ZERO_WIDTH.sub("", text)
    text = re.sub(r"\|+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def slugify(value: str | None, fallback: str = "client", max_length: int = 20) -> str:
    """
    >>> slugify("Hot Tub Man Ltd.")
    'hot-tub-man-ltd'
    """
    slug = re.sub(r"[^a-z0-9]+", "-", (value or fallback or "client").lower()).strip("-")
    return slug[:max_length]


def label_placeholder(label_path: str) -> str:
    """``SALES/New Inquiries`` -> ``<<<LABEL_SALES_NEW_INQUIRIES_ID>>>``"""
    key = re.sub(r"\s+", "_", label_path.upper()).replace("/", "_")
    return f"<<<LABEL_{key}_ID>>>"


def load_template(provider: str = "gmail") -> dict[str, Any]:
    """
    Bundled base workflow template for the provider (deep copy).

    Raises:
        TemplateInjectionError: Template file missing or not valid JSON
    """
    provider = normalize_provider(provider)
    if provider not in _template_cache:
        path = TEMPLATES_DIR / f"{provider}.json"
        try:
            with open(path, encoding="utf-8") as f:
                _template_cache[provider] = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load %s workflow template: %s", provider, e)
            raise TemplateInjectionError(f"Failed to load {provider} template: {e}") from e
    return copy.deepcopy(_template_cache[provider])


def clear_template_cache() -> None:
    _template_cache.clear()


def _business_types(client_data: dict[str, Any]) -> list[str]:
    business = client_data.get("business") or {}
    types = business.get("types") or ([business["type"]] if business.get("type") else [])
    return list(types)


def build_ai_placeholders(client_data: dict[str, Any], schema: dict[str, Any]) -> dict[str, str]:
    business_types = _business_types(client_data)
    return {
        "<<<AI_SYSTEM_MESSAGE>>>": build_classifier_system_message(client_data, schema),
        "<<<AI_KEYWORDS>>>": json.dumps(schema.get("keywords") or {}),
        "<<<AI_INTENT_MAPPING>>>": json.dumps(schema.get("intentRouting") or {}),
        "<<<AI_CLASSIFICATION_RULES>>>": "\n".join(
            (schema.get("aiPrompts") or {}).get("classificationRules") or []
        ),
        "<<<AI_BUSINESS_TYPES>>>": " + ".join(business_types),
    }


def _formality(voice: dict[str, Any]) -> str:
    level = voice.get("formalityLevel")
    if not isinstance(level, (int, float)):
        return "professional"
    if level >= 0.8:
        return "formal"
    if level < 0.4:
        return "casual"
    return "professional"


def build_behavior_placeholders(client_data: dict[str, Any], schema: dict[str, Any]) -> dict[str, str]:
    rules = client_data.get("rules") or {}
    voice_profile = client_data.get("voiceProfile") or {}
    voice = (voice_profile.get("style_profile") or {}).get("voice") or {}
    services = client_data.get("services") or []
    allow_pricing = bool((rules.get("aiGuardrails") or {}).get("allowPricing"))

    upsell = ""
    if len(services) > 1:
        names = ", ".join(service.get("name", "") for service in services[:5])
        upsell = f"When it fits the request, mention related services: {names}."
    followup = f"Offer a follow-up within {rules['sla']}." if rules.get("sla") else ""

    return {
        "<<<BEHAVIOR_VOICE_TONE>>>": voice.get("tone")
        or rules.get("tone")
        or (schema.get("toneProfile") or {}).get("primary")
        or "Professional and friendly",
        "<<<BEHAVIOR_FORMALITY>>>": _formality(voice),
        "<<<BEHAVIOR_ALLOW_PRICING>>>": str(allow_pricing).lower(),
        "<<<BEHAVIOR_REPLY_PROMPT>>>": build_reply_system_message(client_data, schema, voice_profile),
        "<<<BEHAVIOR_GOALS>>>": (
            "1. Answer the customer's question or acknowledge the request\n"
            "2. Collect the details the team needs to act\n"
            "3. Set a clear next step"
        ),
        "<<<BEHAVIOR_UPSELL_TEXT>>>": upsell,
        "<<<BEHAVIOR_FOLLOWUP_TEXT>>>": followup,
    }


def _default_schema_placeholders(client_data: dict[str, Any]) -> dict[str, str]:
    business = client_data.get("business") or {}
    rules = client_data.get("rules") or {}
    name = business.get("name") or "Your Business"
    return {
        "<<<AI_SYSTEM_MESSAGE>>>": f"You are an email classifier for {name}. Categorize emails accurately.",
        "<<<AI_KEYWORDS>>>": json.dumps({"emergency": ["urgent", "emergency", "ASAP"]}),
        "<<<AI_INTENT_MAPPING>>>": json.dumps({}),
        "<<<AI_CLASSIFICATION_RULES>>>": "",
        "<<<AI_BUSINESS_TYPES>>>": " + ".join(_business_types(client_data)),
        "<<<BEHAVIOR_VOICE_TONE>>>": rules.get("tone") or "Professional and friendly",
        "<<<BEHAVIOR_FORMALITY>>>": "professional",
        "<<<BEHAVIOR_ALLOW_PRICING>>>": str(
            bool((rules.get("aiGuardrails") or {}).get("allowPricing"))
        ).lower(),
        "<<<BEHAVIOR_REPLY_PROMPT>>>": f"Draft professional replies for {name}.",
        "<<<BEHAVIOR_GOALS>>>": "1. Be helpful\n2. Be professional",
        "<<<BEHAVIOR_UPSELL_TEXT>>>": "",
        "<<<BEHAVIOR_FOLLOWUP_TEXT>>>": "",
    }


def build_replacements(
    client_data: dict[str, Any], schema: dict[str, Any] | None = None
) -> dict[str, str]:
    """
    Placeholder -> raw (unescaped) value for every marker the templates use.

    The AI and behavior values fall back to generic text when the business
    schema cannot be built.
    """
    business = client_data.get("business") or {}
    rules = client_data.get("rules") or {}
    integrations = client_data.get("integrations") or {}
    email_labels = client_data.get("email_labels") or {}

    business_name = sanitize_business_name(business.get("name"))
    currency = sanitize_for_workflow_name(business.get("currency"))

    replacements: dict[str, Any] = {
        "<<<BUSINESS_NAME>>>": business_name or "Your Business",
        "<<<CONFIG_VERSION>>>": client_data.get("version") or 1,
        "<<<CLIENT_ID>>>": client_data.get("id"),
        "<<<USER_ID>>>": client_data.get("id"),
        "<<<EMAIL_DOMAIN>>>": sanitize_for_workflow_name(business.get("emailDomain")) or "example.com",
        "<<<CURRENCY>>>": currency or "USD",
        "<<<CLIENT_GMAIL_CRED_ID>>>": (integrations.get("gmail") or {}).get("credentialId") or "",
        "<<<CLIENT_OUTLOOK_CRED_ID>>>": (integrations.get("outlook") or {}).get("credentialId") or "",
        "<<<CLIENT_OPENAI_CRED_ID>>>": (integrations.get("openai") or {}).get("credentialId")
        or N8N_OPENAI_CREDENTIAL_ID,
        "<<<CLIENT_POSTGRES_CRED_ID>>>": (integrations.get("postgres") or {}).get("credentialId") or "",
        "<<<MANAGERS_TEXT>>>": ", ".join(
            sanitize_for_workflow_name(m.get("name")) for m in client_data.get("managers") or []
        ),
        "<<<SUPPLIERS>>>": json.dumps(
            [
                {"name": s.get("name"), "email": s.get("email"), "category": s.get("category")}
                for s in client_data.get("suppliers") or []
            ]
        ),
        "<<<LABEL_MAP>>>": json.dumps(email_labels),
        "<<<LABEL_MAPPINGS>>>": json.dumps(email_labels),
        "<<<SIGNATURE_BLOCK>>>": "\n\n"
        + build_signature({**client_data, "business": {**business, "name": business_name}}),
        "<<<SERVICE_CATALOG_TEXT>>>": format_service_catalog(client_data.get("services"), currency),
        "<<<ESCALATION_RULE>>>": rules.get("escalationRules") or "",
        "<<<REPLY_TONE>>>": rules.get("tone") or "",
        "<<<ALLOW_PRICING>>>": str(bool((rules.get("aiGuardrails") or {}).get("allowPricing"))).lower(),
    }

    try:
        if schema is None:
            schema = merge_ai_schemas(_business_types(client_data))
        replacements.update(build_ai_placeholders(client_data, schema))
        replacements.update(build_behavior_placeholders(client_data, schema))
    except (LookupError, ValueError) as e:
        logger.warning("Could not build AI configuration, using defaults: %s", e)
        counter("workflows.injection.ai_fallback")
        replacements.update(_default_schema_placeholders(client_data))

    for label_path, label_id in email_labels.items():
        replacements[label_placeholder(label_path)] = label_id

    return {key: "" if value is None else str(value) for key, value in replacements.items()}


def find_unresolved_placeholders(workflow: dict[str, Any]) -> list[str]:
    """Sorted marker names still present anywhere in the workflow."""
    return sorted(set(PLACEHOLDER_PATTERN.findall(json.dumps(workflow))))


def inject_onboarding_data(
    client_data: dict[str, Any],
    template: dict[str, Any] | None = None,
    schema: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Fill a workflow template with the business's onboarding data.

    Args:
        client_data: Output of build_client_data
        template: Workflow template; defaults to the bundled template for
            client_data["provider"]
        schema: Business schema; defaults to the merge of the business types

    Raises:
        TemplateInjectionError: The filled template is not valid JSON
    """
    provider = normalize_provider(client_data.get("provider"))
    if template is None:
        template = load_template(provider)

    template_string = json.dumps(template)
    for placeholder, value in build_replacements(client_data, schema).items():
        if placeholder == "<<<BUSINESS_NAME>>>":
            value = sanitize_for_workflow_name(value)
        template_string = template_string.replace(placeholder, escape_for_json(value))

    try:
        workflow = json.loads(template_string)
    except json.JSONDecodeError as e:
        start = max(0, e.pos - 100)
        logger.error(
            "Injected template is not valid JSON at %d: %s", e.pos, template_string[start : e.pos + 100]
        )
        log_event("workflows.injection.error", provider=provider, position=e.pos)
        raise TemplateInjectionError(f"Template JSON parsing failed: {e}") from e

    if workflow.get("name"):
        workflow["name"] = sanitize_for_workflow_name(workflow["name"])

    unresolved = find_unresolved_placeholders(workflow)
    if unresolved:
        logger.warning("Template placeholders left unresolved: %s", ", ".join(unresolved))

    integrations = client_data.get("integrations") or {}
    workflow = inject_credentials_into_nodes(
        workflow,
        {
            "gmail": (integrations.get("gmail") or {}).get("credentialId"),
            "outlook": (integrations.get("outlook") or {}).get("credentialId"),
            "openai": (integrations.get("openai") or {}).get("credentialId") or N8N_OPENAI_CREDENTIAL_ID,
        },
        provider=provider,
    )
    counter("workflows.injected")
    return workflow


def inject_credentials_into_nodes(
    workflow: dict[str, Any],
    credentials: dict[str, str | None],
    provider: str | None = None,
) -> dict[str, Any]:
    """
    Point mail and OpenAI nodes at the given n8n credential ids.

    Nodes keep their template credentials when no id is given for their
    kind. The workflow name follows the provider (Gmail <-> Outlook).
    The input workflow is not modified.
    """
    workflow = copy.deepcopy(workflow)
    gmail_id = credentials.get("gmail")
    outlook_id = credentials.get("outlook")
    openai_id = credentials.get("openai")

    for node in workflow.get("nodes") or []:
        node_type = node.get("type")
        if node_type in GMAIL_NODE_TYPES and gmail_id:
            node["credentials"] = {"gmailOAuth2": {"id": gmail_id, "name": "Gmail OAuth2 account"}}
        elif node_type in OUTLOOK_NODE_TYPES and outlook_id:
            node["credentials"] = {
                "microsoftOutlookOAuth2Api": {
                    "id": outlook_id,
                    "name": "Microsoft Outlook OAuth2 account",
                }
            }
        elif node_type == OPENAI_NODE_TYPE:
            if openai_id:
                node["credentials"] = {"openAiApi": {"id": openai_id, "name": "OpenAI API Key"}}
            else:
                logger.warning("No OpenAI credential id for node: %s", node.get("name"))

    if provider is None:
        provider = "outlook" if outlook_id and not gmail_id else "gmail"
    name = workflow.get("name")
    if name:
        if normalize_provider(provider) == "outlook":
            workflow["name"] = re.sub("gmail", "Outlook", name, flags=re.IGNORECASE)
        else:
            workflow["name"] = re.sub("outlook", "Gmail", name, flags=re.IGNORECASE)
    return workflow
