#!/usr/bin/env python3
"""Provision Gmail labels / Outlook folders for a user

Usage:
    python scripts/provision_labels.py <user_id>
    python scripts/provision_labels.py <user_id> --business-type "Pools & Spas" --business-type HVAC
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from floworx.infrastructure.database import init_database  # noqa: E402
from floworx.infrastructure.env import ensure_env_loaded  # noqa: E402
from floworx.labels.provisioner import provision_label_schema_for  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Create the business label/folder tree in a mailbox")
    parser.add_argument("user_id")
    parser.add_argument(
        "--business-type",
        action="append",
        dest="business_types",
        help="Override the profile's business types (repeatable)",
    )
    args = parser.parse_args()

    ensure_env_loaded()
    init_database()

    result = provision_label_schema_for(args.user_id, args.business_types)
    if not result.success:
        print(f"❌ Provisioning failed: {result.error}")
        sys.exit(1)

    print(f"✅ {result.message}")
    print(f"   Provider: {result.provider}")
    print(f"   Business types: {', '.join(result.business_types)}")
    for path, label_id in sorted(result.label_map.items()):
        print(f"   {path} -> {label_id}")


if __name__ == "__main__":
    main()
