"""
AI system-message generation for the classifier and reply-drafting agents.

Both builders take the onboarding client data (see
``floworx.onboarding.validation.build_client_data``) and a business schema.
The schema may be a single business type's schema (``labels`` list) or a
multi-type merge from ``merge_ai_schemas`` (``labelSchema.labels`` dict).
"""

from __future__ import annotations

from typing import Any

from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter
from floworx.prompts import get_classifier_prompt, get_reply_prompt
from floworx.schemas.ai_merger import get_ai_schema_for_business_type, merge_ai_schemas
from floworx.schemas.labels_base import fill_team_names

logger = get_logger(__name__)

DEFAULT_BUSINESS_HOURS = "Monday-Friday 8AM-5PM"
BASE_CATEGORIES = ("Sales", "Support", "Billing", "Recruitment", "Spam")


def format_business_hours(hours: dict[str, Any] | None) -> str:
    """
    Human-readable hours from ``{mon_fri, sat, sun}``; closed days are
    omitted.

    >>> format_business_hours({"mon_fri": "8AM-5PM", "sat": "9AM-1PM", "sun": "Closed"})
    'Monday-Friday 8AM-5PM, Saturday 9AM-1PM'
    """
    if not isinstance(hours, dict):
        return DEFAULT_BUSINESS_HOURS

    parts = []
    if hours.get("mon_fri"):
        parts.append(f"Monday-Friday {hours['mon_fri']}")
    if hours.get("sat") and hours["sat"] != "Closed":
        parts.append(f"Saturday {hours['sat']}")
    if hours.get("sun") and hours["sun"] != "Closed":
        parts.append(f"Sunday {hours['sun']}")
    return ", ".join(parts) or DEFAULT_BUSINESS_HOURS


def schema_labels(schema: dict[str, Any]) -> list[dict[str, Any]]:
    """
    ``[{name, description, critical, sub: [names]}]`` for either schema
    format, in the schema's own order.
    """
    label_schema = schema.get("labelSchema")
    if isinstance(label_schema, dict) and isinstance(label_schema.get("labels"), dict):
        labels = label_schema["labels"]
        order = list(label_schema.get("provisioningOrder") or labels)
        order += [name for name in labels if name not in order]
        return [
            {
                "name": name,
                "description": labels[name].get("description", ""),
                "critical": bool(labels[name].get("critical")),
                "sub": list(labels[name].get("sub") or []),
            }
            for name in order
            if name in labels
        ]

    return [
        {
            "name": label["name"],
            "description": label.get("description", ""),
            "critical": bool(label.get("critical")),
            "sub": [sub["name"] if isinstance(sub, dict) else sub for sub in label.get("sub") or []],
        }
        for label in schema.get("labels") or []
    ]


def _business_types(client_data: dict[str, Any]) -> list[str]:
    business = client_data.get("business") or {}
    types = business.get("types") or []
    if not types and business.get("type"):
        types = [business["type"]]
    return list(types)


def _fill_business_name(text: str, business_name: str) -> str:
    return (text or "").replace("{{BUSINESS_NAME}}", business_name)


def _business_context_lines(client_data: dict[str, Any]) -> list[str]:
    business = client_data.get("business") or {}
    contact = client_data.get("contact") or {}
    rules = client_data.get("rules") or {}

    lines = [f"- Business: {business.get('name') or 'Your Business'}"]
    types = _business_types(client_data)
    if types:
        lines.append(f"- Business types: {', '.join(types)}")
    optional = [
        ("Service area", business.get("serviceArea")),
        ("Phone", contact.get("phone")),
        ("Website", contact.get("website")),
        ("Email domain", business.get("emailDomain")),
        ("Timezone", business.get("timezone")),
        ("Currency", business.get("currency")),
        ("Phone provider", rules.get("phoneProvider")),
        ("CRM", rules.get("crmProvider")),
    ]
    lines += [f"- {label}: {value}" for label, value in optional if value]
    lines.append(f"- Business hours: {format_business_hours(rules.get('businessHours'))}")
    if rules.get("sla"):
        lines.append(f"- Response time target: {rules['sla']}")
    if rules.get("holidays"):
        lines.append(f"- Closed on: {', '.join(rules['holidays'])}")
    return lines


def _categories_section(schema: dict[str, Any], client_data: dict[str, Any]) -> str:
    """Sub-categories carry the business's manager and supplier names, not placeholders."""
    managers = client_data.get("managers") or []
    suppliers = client_data.get("suppliers") or []
    lines = [f"- {name}" for name in BASE_CATEGORIES]
    base_keys = {name.upper() for name in BASE_CATEGORIES}
    for label in schema_labels(schema):
        if label["name"].upper() in base_keys:
            continue
        line = f"- {label['name']}"
        if label["description"]:
            line += f": {label['description']}"
        if label["critical"]:
            line += " (critical)"
        lines.append(line)
        sub = fill_team_names(label["sub"], managers, suppliers)
        if sub:
            lines.append(f"    Sub-categories: {', '.join(sub)}")
    return "\n".join(lines)


def _escalation_section(schema: dict[str, Any], client_data: dict[str, Any]) -> str:
    rules = client_data.get("rules") or {}
    lines = []
    for escalation_type, rule in (schema.get("escalationRules") or {}).items():
        line = f"- {escalation_type.upper()}: respond within {rule.get('sla', 'the standard SLA')}"
        if rule.get("notify"):
            line += f", notify {', '.join(rule['notify'])}"
        lines.append(line)

    emergency = list((schema.get("keywords") or {}).get("emergency") or [])
    for keyword in rules.get("urgentKeywords") or []:
        if keyword not in emergency:
            emergency.append(keyword)
    if emergency:
        lines.append(f"- Treat as URGENT when the email mentions: {', '.join(emergency)}")
    if rules.get("escalationRules"):
        lines.append(f"- Business rule: {rules['escalationRules']}")
    return "\n".join(lines) or "- No special escalation rules."


def _service_routing_section(client_data: dict[str, Any]) -> str:
    lines = []
    for index, business_type in enumerate(_business_types(client_data)):
        marker = " (Primary)" if index == 0 else ""
        type_schema = get_ai_schema_for_business_type(business_type) or {}
        keywords = (type_schema.get("keywords") or {}).get("primary") or []
        line = f"- {business_type}{marker}"
        if keywords:
            line += f": {', '.join(keywords)}"
        lines.append(line)
    return "\n".join(lines) or "- Route every service request to SERVICE."


def _team_section(client_data: dict[str, Any]) -> str:
    managers = client_data.get("managers") or []
    suppliers = client_data.get("suppliers") or []
    lines = []
    if managers:
        lines.append("Managers (use MANAGER/<name> when an email is addressed to them):")
        for manager in managers:
            line = f"- {manager.get('name')}"
            if manager.get("role"):
                line += f" ({manager['role']})"
            if manager.get("email"):
                line += f" <{manager['email']}>"
            lines.append(line)
        lines.append(f"Escalate unassigned urgent emails to {managers[0].get('name')}.")
    if suppliers:
        lines.append("Suppliers (use SUPPLIERS/<name> for mail from these senders):")
        for supplier in suppliers:
            senders = list(supplier.get("domains") or [])
            if supplier.get("email"):
                senders.insert(0, supplier["email"])
            line = f"- {supplier.get('name')}"
            if senders:
                line += f": {', '.join(senders)}"
            lines.append(line)
    return "\n".join(lines) or "- No team members configured."


def build_classifier_system_message(client_data: dict[str, Any], schema: dict[str, Any]) -> str:
    """
    Classifier system message with business context, categories taken from
    the schema's labels, escalation, per-service routing, team routing and
    the JSON output contract.
    """
    business_name = (client_data.get("business") or {}).get("name") or "Your Business"
    prompts = schema.get("aiPrompts") or {}
    rules = [_fill_business_name(prompts.get("classificationPrompt", ""), business_name)]
    rules += [f"- {rule}" for rule in prompts.get("classificationRules") or []]

    message = get_classifier_prompt(
        business_name=business_name,
        business_context="\n".join(_business_context_lines(client_data)),
        categories=_categories_section(schema, client_data),
        escalation_rules=_escalation_section(schema, client_data),
        service_routing=_service_routing_section(client_data),
        team_routing=_team_section(client_data),
        classification_rules="\n".join(line for line in rules if line),
    )
    counter("prompts.classifier_built")
    return message


def format_service_catalog(services: list[dict[str, Any]] | None, currency: str | None = None) -> str:
    """One ``- name (pricing currency): description`` line per service; empty without services."""
    currency = currency or "USD"
    if not services:
        return ""

    lines = []
    for service in services:
        pricing = " ".join(
            str(part) for part in (service.get("pricingType"), service.get("price")) if part
        )
        line = f"- {service.get('name')}"
        if pricing:
            line += f" ({pricing} {currency})"
        if service.get("description"):
            line += f": {service['description']}"
        lines.append(line)
    return "\n".join(lines)


def _pricing_rule(client_data: dict[str, Any]) -> str:
    guardrails = (client_data.get("rules") or {}).get("aiGuardrails") or {}
    if guardrails.get("allowPricing"):
        return "You may quote the prices listed under SERVICES. Never invent a price that is not listed."
    return (
        "Do not quote prices or estimates. Say that the team will follow up with pricing "
        "after reviewing the request."
    )


def _voice_guidance(voice_profile: dict[str, Any] | None) -> str:
    style = (voice_profile or {}).get("style_profile") or {}
    voice = style.get("voice") or {}
    if not voice_profile or not voice_profile.get("learning_count"):
        return "No learned voice profile yet. Follow the tone above."

    lines = [f"Learned from {voice_profile['learning_count']} past replies."]
    if voice.get("tone"):
        lines.append(f"- Tone: {voice['tone']}")
    for field in ("empathyLevel", "formalityLevel", "directnessLevel"):
        if field in voice:
            lines.append(f"- {field[:-5].capitalize()} level: {voice[field]}/1.0")
    phrases = [
        p["phrase"] if isinstance(p, dict) else p for p in style.get("signaturePhrases") or []
    ]
    phrases += voice.get("commonPhrases") or []
    if phrases:
        lines.append(f"- Phrases this business uses: {'; '.join(dict.fromkeys(phrases[:8]))}")
    if voice.get("signOff"):
        lines.append(f"- Sign-off: {voice['signOff']}")
    return "\n".join(lines)


def build_signature(client_data: dict[str, Any]) -> str:
    """Custom signature when one was entered, else ``The <name> Team`` + phone."""
    if client_data.get("signature"):
        return client_data["signature"]
    business_name = (client_data.get("business") or {}).get("name") or "Your Business"
    phone = (client_data.get("contact") or {}).get("phone") or ""
    return f"Best regards,\nThe {business_name} Team\n{phone}".rstrip()


def build_reply_system_message(
    client_data: dict[str, Any],
    schema: dict[str, Any],
    voice_profile: dict[str, Any] | None = None,
) -> str:
    business_name = (client_data.get("business") or {}).get("name") or "Your Business"
    rules = client_data.get("rules") or {}
    tone = schema.get("toneProfile") or {}

    role = _fill_business_name((schema.get("aiPrompts") or {}).get("replyPrompt", ""), business_name)
    role_and_tone = (
        f"You are the customer service assistant for {business_name}. {role}".rstrip()
        + f"\nTone: {rules.get('tone') or tone.get('primary') or 'Professional and friendly'}"
    )
    if tone.get("style"):
        role_and_tone += f" ({tone['style']})"

    message = get_reply_prompt(
        role_and_tone=role_and_tone,
        business_context="\n".join(_business_context_lines(client_data)),
        service_catalog=format_service_catalog(
            client_data.get("services"), (client_data.get("business") or {}).get("currency")
        )
        or "No service catalog provided. Offer to have the team follow up with details.",
        pricing_rule=_pricing_rule(client_data),
        voice_guidance=_voice_guidance(voice_profile or client_data.get("voiceProfile")),
        signature=build_signature(client_data),
    )
    counter("prompts.reply_built")
    return message


def generate_system_messages(
    client_data: dict[str, Any], schema: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Both system messages for a business; the schema defaults to the merge of its types."""
    business_types = _business_types(client_data)
    if schema is None:
        schema = merge_ai_schemas(business_types)
    logger.debug("Generating system messages for business types: %s", business_types)
    return {
        "businessTypes": business_types,
        "classifier": build_classifier_system_message(client_data, schema),
        "reply": build_reply_system_message(client_data, schema),
    }
