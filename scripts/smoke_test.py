#!/usr/bin/env python3
"""Smoke test for a FloWorx installation

Checks, in order:
    1. n8n is reachable with the configured API key
    2. Every registered business-type schema loads and validates
    3. Label and AI schemas merge for a multi-type business
    4. Classifier and reply system messages generate
    5. The Gmail and Outlook templates inject without leftover placeholders
    6. (optional) A test message goes out through a user's connected mailbox

Usage:
    python scripts/smoke_test.py
    python scripts/smoke_test.py --skip-n8n
    python scripts/smoke_test.py --send-test-message USER_ID
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from floworx.infrastructure.database import init_database  # noqa: E402
from floworx.infrastructure.env import ensure_env_loaded  # noqa: E402
from floworx.infrastructure.retry import AdapterError  # noqa: E402
from floworx.prompts.builder import generate_system_messages  # noqa: E402
from floworx.schemas.ai_merger import merge_ai_schemas  # noqa: E402
from floworx.schemas.label_merger import merge_business_type_schemas  # noqa: E402
from floworx.schemas.loader import SchemaNotFoundError, SchemaValidationError, load_all_schemas  # noqa: E402
from floworx.storage.integrations import IntegrationRepository  # noqa: E402
from floworx.storage.profiles import ProfileRepository  # noqa: E402
from floworx.workflows.injector import find_unresolved_placeholders, inject_onboarding_data  # noqa: E402
from floworx.workflows.n8n_client import N8nClient  # noqa: E402
from floworx.workflows.verification import default_recipient, send_test_message  # noqa: E402

SAMPLE_CLIENT = {
    "id": "00000000-smoke-test",
    "version": 1,
    "business": {
        "name": "Smoke Test Pools",
        "types": ["Pools & Spas", "HVAC"],
        "emailDomain": "smoketest.example",
        "currency": "USD",
    },
    "contact": {"phone": "555-0100"},
    "services": [{"name": "Pool opening", "pricingType": "fixed", "price": 250}],
    "rules": {"sla": "24h", "tone": "Friendly", "aiGuardrails": {"allowPricing": False}},
    "managers": [{"name": "Alex", "role": "Owner"}],
    "suppliers": [{"name": "PoolCorp", "email": "orders@poolcorp.example"}],
    "email_labels": {"URGENT": "Label_1", "MISC": "Label_2"},
    "integrations": {},
}


def report(name: str, ok: bool, detail: str = "") -> bool:
    mark = "✅" if ok else "❌"
    print(f"{mark} {name}" + (f": {detail}" if detail else ""))
    return ok


def check_n8n() -> bool:
    available = N8nClient().is_available()
    return report("n8n API", available, "" if available else "not reachable or API key rejected")


def check_schemas() -> bool:
    try:
        schemas = load_all_schemas()
    except (SchemaNotFoundError, SchemaValidationError) as e:
        return report("Business schemas", False, str(e))
    return report("Business schemas", bool(schemas), f"{len(schemas)} loaded")


def check_merging() -> bool:
    types = SAMPLE_CLIENT["business"]["types"]
    labels = merge_business_type_schemas(types)
    ai = merge_ai_schemas(types)
    return report(
        "Schema merging",
        bool(labels.get("labels")) and bool(ai.get("labelSchema")),
        f"{len(labels.get('labels', []))} labels",
    )


def check_prompts() -> bool:
    messages = generate_system_messages(SAMPLE_CLIENT)
    ok = "Smoke Test Pools" in messages["classifier"] and bool(messages["reply"])
    return report("Prompt generation", ok, f"classifier {len(messages['classifier'])} chars")


def check_injection() -> bool:
    ok = True
    for provider in ("gmail", "outlook"):
        workflow = inject_onboarding_data({**SAMPLE_CLIENT, "provider": provider})
        leftover = [
            name for name in find_unresolved_placeholders(workflow) if not name.startswith("LABEL_")
        ]
        ok = report(f"Template injection ({provider})", not leftover, ", ".join(leftover)) and ok
    return ok


def check_test_message(user_id: str) -> bool:
    integration = IntegrationRepository().get_active(user_id)
    if integration is None:
        return report("Test message", False, f"no active integration for {user_id}")
    profile = ProfileRepository().get(user_id) or {}
    try:
        to = default_recipient(integration, profile.get("client_config"))
        result = send_test_message(user_id, integration["provider"], to)
    except (AdapterError, ValueError) as e:
        return report("Test message", False, str(e))
    return report("Test message", True, f"sent to {result.to} via {result.provider}")


def main() -> None:
    parser = argparse.ArgumentParser(description="FloWorx smoke test")
    parser.add_argument("--skip-n8n", action="store_true", help="Do not contact n8n")
    parser.add_argument(
        "--send-test-message",
        metavar="USER_ID",
        help="Send a test email through this user's connected mailbox",
    )
    args = parser.parse_args()

    ensure_env_loaded()
    print("=" * 60)
    print("          FloWorx smoke test")
    print("=" * 60)

    results = []
    if not args.skip_n8n:
        results.append(check_n8n())
    results += [check_schemas(), check_merging(), check_prompts(), check_injection()]
    if args.send_test_message:
        init_database()
        results.append(check_test_message(args.send_test_message))

    print()
    print(f"{sum(results)}/{len(results)} checks passed")
    sys.exit(0 if all(results) else 1)


if __name__ == "__main__":
    main()
