#!/usr/bin/env python3
"""Diagnose a user's deployed n8n workflow

Runs the activation checker against the user's active workflow (or an
explicit n8n workflow id) and prints each step.

Usage:
    python scripts/diagnose_workflow.py <user_id>
    python scripts/diagnose_workflow.py <user_id> --workflow-id <n8n id>
    python scripts/diagnose_workflow.py <user_id> --json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from floworx.infrastructure.database import init_database  # noqa: E402
from floworx.infrastructure.env import ensure_env_loaded  # noqa: E402
from floworx.storage.workflows import WorkflowRepository  # noqa: E402
from floworx.workflows.activation import ensure_workflow_active  # noqa: E402

STEP_MARKS = {"success": "✅", "already_active": "✅", "pending": "⏳", "failed": "❌"}


def main() -> None:
    parser = argparse.ArgumentParser(description="Check that a deployed workflow is active and functional")
    parser.add_argument("user_id")
    parser.add_argument("--workflow-id", help="n8n workflow id (defaults to the user's active workflow)")
    parser.add_argument("--json", action="store_true", help="Print the raw result")
    args = parser.parse_args()

    ensure_env_loaded()
    init_database()

    workflow_id = args.workflow_id
    if not workflow_id:
        active = WorkflowRepository().get_active(args.user_id)
        if active is None:
            print(f"❌ No active workflow recorded for user: {args.user_id}")
            sys.exit(1)
        workflow_id = active["n8n_workflow_id"]

    result = ensure_workflow_active(args.user_id, workflow_id)
    if args.json:
        print(json.dumps(result, indent=2, default=str))
    else:
        print(f"Workflow {workflow_id} for user {args.user_id}\n")
        for step in result.get("steps", []):
            print(f"   {STEP_MARKS.get(step['status'], '•')} {step['step']}: {step['status']}")
        for issue in result.get("issues", []):
            print(f"   ⚠️  {issue}")
        if result.get("error"):
            print(f"   ❌ {result['error']}")
        print(f"\nStatus: {result['status']}")

    sys.exit(0 if result["status"] == "fully_functional" else 1)


if __name__ == "__main__":
    main()
