#!/usr/bin/env python3
"""Terminal OAuth setup for a FloWorx mailbox (Gmail or Outlook)

Prints the provider's consent URL, takes the redirect URL (Gmail) or the
authorization code (Outlook) pasted back, stores the encrypted tokens and
records the integration on the user's profile.

Usage:
    python scripts/oauth_setup.py <user_id> --provider gmail
    python scripts/oauth_setup.py <user_id> --provider outlook --email me@company.com

Requirements:
    - FLOWORX_ENCRYPTION_KEY must be set
    - GOOGLE_OAUTH_CLIENT_ID/SECRET or MICROSOFT_OAUTH_CLIENT_ID/SECRET must be set
"""

from __future__ import annotations

import argparse
import os
import secrets
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from floworx.gmail.oauth import GmailOAuthService  # noqa: E402
from floworx.infrastructure.database import init_database  # noqa: E402
from floworx.infrastructure.env import ensure_env_loaded  # noqa: E402
from floworx.outlook.oauth import OutlookOAuthService  # noqa: E402
from floworx.storage.integrations import IntegrationRepository  # noqa: E402

REDIRECT_URI = "http://localhost:8080/"


def check_prerequisites(provider: str) -> list[str]:
    errors = []
    if not os.getenv("FLOWORX_ENCRYPTION_KEY"):
        errors.append(
            "FLOWORX_ENCRYPTION_KEY is not set. Generate one with:\n"
            '   python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
        )
    prefix = "MICROSOFT" if provider == "outlook" else "GOOGLE"
    for key in (f"{prefix}_OAUTH_CLIENT_ID", f"{prefix}_OAUTH_CLIENT_SECRET"):
        if not os.getenv(key):
            errors.append(f"{key} is not set")
    return errors


def setup_gmail(user_id: str) -> None:
    service = GmailOAuthService()
    auth_url, flow = service.initiate_oauth_flow(redirect_uri=REDIRECT_URI)
    print("Open this URL and authorize access:\n")
    print(f"   {auth_url}\n")
    response = input("Paste the full URL you were redirected to: ").strip()
    token_dict = service.exchange_code_for_tokens(flow, response)
    service.store_user_credentials(user_id, token_dict)


def setup_outlook(user_id: str) -> None:
    service = OutlookOAuthService()
    auth_url = service.get_authorization_url(REDIRECT_URI, state=secrets.token_urlsafe(16))
    print("Open this URL and authorize access:\n")
    print(f"   {auth_url}\n")
    code = input("Paste the 'code' parameter from the redirect URL: ").strip()
    token = service.exchange_code_for_tokens(code, REDIRECT_URI)
    service.store_user_credentials(user_id, token)


def main() -> None:
    parser = argparse.ArgumentParser(description="Connect a Gmail or Outlook mailbox to FloWorx")
    parser.add_argument("user_id", help="FloWorx user id")
    parser.add_argument("--provider", choices=("gmail", "outlook"), default="gmail")
    parser.add_argument("--email", help="Mailbox address to record on the integration")
    args = parser.parse_args()

    ensure_env_loaded()
    errors = check_prerequisites(args.provider)
    if errors:
        print("❌ Prerequisites not met:\n")
        for error in errors:
            print(f"   {error}")
        sys.exit(1)

    init_database()
    print(f"🔐 Setting up {args.provider} OAuth for user: {args.user_id}\n")
    try:
        if args.provider == "outlook":
            setup_outlook(args.user_id)
        else:
            setup_gmail(args.user_id)
    except KeyboardInterrupt:
        print("\n❌ Setup cancelled by user")
        sys.exit(1)
    except ValueError as e:
        print(f"\n❌ OAuth setup failed: {e}")
        sys.exit(1)

    IntegrationRepository().connect(args.user_id, args.provider, args.email)
    print("\n✅ Credentials encrypted and stored; integration recorded.")


if __name__ == "__main__":
    main()
