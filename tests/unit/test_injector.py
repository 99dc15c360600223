"""Unit tests for workflow template injection"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from floworx.observability.telemetry import get_counter
from floworx.onboarding.validation import build_client_data
from floworx.schemas.loader import SchemaNotFoundError
from floworx.workflows.injector import (
    OPENAI_NODE_TYPE,
    build_replacements,
    escape_for_json,
    find_unresolved_placeholders,
    inject_credentials_into_nodes,
    inject_onboarding_data,
    label_placeholder,
    load_template,
    sanitize_business_name,
    sanitize_for_workflow_name,
    slugify,
)


def _node(workflow, node_id):
    return next(node for node in workflow["nodes"] if node["id"] == node_id)


def test_escape_for_json():
    assert escape_for_json('say "hi"\\\n') == 'say \\"hi\\"\\\\\\n'
    assert escape_for_json("bell\x07tab\t") == "belltab\\t"
    assert escape_for_json(None) == ""
    assert escape_for_json(3) == "3"


def test_sanitize_for_workflow_name():
    assert sanitize_for_workflow_name("  A|B\x00  C ") == "AB C"
    assert sanitize_for_workflow_name(None) == ""


def test_sanitize_business_name():
    assert sanitize_business_name("Hot\u200b Tub || Man\n Ltd.") == "Hot Tub Man Ltd."
    assert sanitize_business_name("\uff21cme") == "Acme"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("Hot Tub Man Ltd.", "hot-tub-man-ltd"),
        ("  --Acme & Sons--  ", "acme-sons"),
        ("A Very Long Business Name Indeed", "a-very-long-business"),
        (None, "client"),
    ],
)
def test_slugify(value, expected):
    assert slugify(value) == expected


def test_label_placeholder():
    assert label_placeholder("SALES/New Inquiries") == "<<<LABEL_SALES_NEW_INQUIRIES_ID>>>"
    assert label_placeholder("URGENT") == "<<<LABEL_URGENT_ID>>>"


def test_load_template_returns_copies():
    first = load_template("gmail")
    first["nodes"].clear()

    assert load_template("google")["nodes"]
    assert load_template("microsoft")["name"].endswith("Outlook AI Email Automation")


def test_inject_gmail_template(sample_client_data):
    workflow = inject_onboarding_data(sample_client_data)

    assert workflow["name"] == "Hot Tub Man Ltd. Gmail AI Email Automation"
    assert find_unresolved_placeholders(workflow) == []

    trigger = _node(workflow, "gmail-trigger")
    assert trigger["credentials"]["gmailOAuth2"]["id"] == "cred-gmail"
    assert _node(workflow, "label-urgent")["parameters"]["labelIds"] == ["Label_U"]

    system_message = _node(workflow, "ai-classifier")["parameters"]["options"]["systemMessage"]
    assert "Hot Tub Man Ltd." in system_message
    assert "\n### TEAM ROUTING\n" in system_message

    js_code = _node(workflow, "parse-classification")["parameters"]["jsCode"]
    assert '"SALES/New Inquiries": "Label_S"' in js_code
    assert "businessTypes: 'Pools & Spas + HVAC'" in js_code
    assert get_counter("workflows.injected") == 1


def test_inject_outlook_template(sample_profile_row):
    client_data = build_client_data(
        sample_profile_row, [{"provider": "microsoft", "n8n_credential_id": "cred-outlook"}]
    )

    workflow = inject_onboarding_data(client_data)

    assert workflow["name"] == "Hot Tub Man Ltd. Outlook AI Email Automation"
    trigger = _node(workflow, "outlook-trigger")
    assert trigger["credentials"]["microsoftOutlookOAuth2Api"]["id"] == "cred-outlook"
    assert not any(node["type"].startswith("n8n-nodes-base.gmail") for node in workflow["nodes"])


def test_missing_labels_are_left_unresolved(sample_client_data):
    client_data = {**sample_client_data, "email_labels": {}}

    workflow = inject_onboarding_data(client_data)

    assert find_unresolved_placeholders(workflow) == ["LABEL_MISC_ID", "LABEL_URGENT_ID"]


def test_hostile_business_name_keeps_json_valid(sample_client_data):
    business = {**sample_client_data["business"], "name": 'Bob\'s "Best" Pools\n|Spa'}

    workflow = inject_onboarding_data({**sample_client_data, "business": business})

    assert workflow["name"] == 'Bob\'s "Best" Pools Spa Gmail AI Email Automation'


def test_build_replacements_values(sample_client_data):
    client_data = {
        **sample_client_data,
        "voiceProfile": {"style_profile": {"voice": {"tone": "warm", "formalityLevel": 0.9}}},
    }

    replacements = build_replacements(client_data)

    assert replacements["<<<CURRENCY>>>"] == "CAD"
    assert replacements["<<<EMAIL_DOMAIN>>>"] == "hottubman.ca"
    assert replacements["<<<MANAGERS_TEXT>>>"] == "Hailey, Jillian"
    assert replacements["<<<SIGNATURE_BLOCK>>>"] == "\n\nThanks,\nThe Hot Tub Man Team"
    assert replacements["<<<ALLOW_PRICING>>>"] == "true"
    assert replacements["<<<BEHAVIOR_VOICE_TONE>>>"] == "warm"
    assert replacements["<<<BEHAVIOR_FORMALITY>>>"] == "formal"
    assert replacements["<<<BEHAVIOR_FOLLOWUP_TEXT>>>"] == "Offer a follow-up within 24 hours."
    assert "Hot tub repair, Water care visit" in replacements["<<<BEHAVIOR_UPSELL_TEXT>>>"]
    assert replacements["<<<LABEL_SALES_NEW_INQUIRIES_ID>>>"] == "Label_S"
    assert replacements["<<<CONFIG_VERSION>>>"] == "1"


def test_build_replacements_falls_back_without_schema(sample_client_data):
    with patch(
        "floworx.workflows.injector.merge_ai_schemas",
        side_effect=SchemaNotFoundError("no schema"),
    ):
        replacements = build_replacements(sample_client_data)

    assert replacements["<<<AI_SYSTEM_MESSAGE>>>"].startswith(
        "You are an email classifier for Hot Tub Man Ltd."
    )
    assert replacements["<<<BEHAVIOR_FORMALITY>>>"] == "professional"
    assert get_counter("workflows.injection.ai_fallback") == 1


def test_inject_credentials_into_nodes():
    workflow = {
        "name": "Acme Gmail AI Email Automation",
        "nodes": [
            {"name": "Trigger", "type": "n8n-nodes-base.gmailTrigger"},
            {"name": "Outlook", "type": "n8n-nodes-base.microsoftOutlook"},
            {"name": "Model", "type": OPENAI_NODE_TYPE},
        ],
    }

    result = inject_credentials_into_nodes(workflow, {"outlook": "o-1", "openai": "ai-1"})

    assert result["name"] == "Acme Outlook AI Email Automation"
    assert "credentials" not in result["nodes"][0]
    assert result["nodes"][1]["credentials"]["microsoftOutlookOAuth2Api"]["id"] == "o-1"
    assert result["nodes"][2]["credentials"] == {"openAiApi": {"id": "ai-1", "name": "OpenAI API Key"}}
    assert "credentials" not in workflow["nodes"][1]


def test_inject_credentials_gmail_renames_outlook_workflow():
    workflow = {"name": "Acme Outlook Flow", "nodes": [{"type": "n8n-nodes-base.gmail"}]}

    result = inject_credentials_into_nodes(workflow, {"gmail": "g-1"}, provider="gmail")

    assert result["name"] == "Acme Gmail Flow"
    assert result["nodes"][0]["credentials"]["gmailOAuth2"]["id"] == "g-1"
