"""FloWorx - onboarding, label provisioning and workflow deployment for email automation"""

from __future__ import annotations

__version__ = "1.0.0"
