"""
Prompt Management Module

Loads the AI system-message templates from text files in ``templates/``.
The builder fills them with business context; editing a template does not
require a code change.
"""

from __future__ import annotations

import os
from pathlib import Path

TEMPLATES_DIR = Path(__file__).parent / "templates"

# Set FLOWORX_CLASSIFIER_PROMPT to try an alternate classifier template
CLASSIFIER_PROMPT_NAME = os.getenv("FLOWORX_CLASSIFIER_PROMPT", "classifier_system")
REPLY_PROMPT_NAME = os.getenv("FLOWORX_REPLY_PROMPT", "reply_system")


class PromptLoader:
    """Load and cache prompt templates from files"""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.templates_dir = templates_dir
        self._cache: dict[str, str] = {}

    def load_prompt(self, prompt_name: str) -> str:
        """
        Load a prompt template from file.

        Args:
            prompt_name: Name of the prompt file (without .txt extension)

        Returns:
            Prompt template string
        """
        if prompt_name not in self._cache:
            prompt_path = self.templates_dir / f"{prompt_name}.txt"

            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

            with open(prompt_path, encoding="utf-8") as f:
                self._cache[prompt_name] = f.read()

        return self._cache[prompt_name]

    def get_classifier_prompt(self, **kwargs) -> str:
        """
        Get the classifier system message with sections injected.

        Args:
            business_name, business_context, categories, escalation_rules,
            service_routing, team_routing, classification_rules
        """
        template = self.load_prompt(CLASSIFIER_PROMPT_NAME)
        return template.format(**kwargs)

    def get_reply_prompt(self, **kwargs) -> str:
        """
        Get the reply-drafting system message with sections injected.

        Args:
            role_and_tone, business_context, service_catalog, pricing_rule,
            voice_guidance, signature
        """
        template = self.load_prompt(REPLY_PROMPT_NAME)
        return template.format(**kwargs)

    def reload(self) -> None:
        """Clear cache and reload prompts from disk"""
        self._cache.clear()


# Global instance
_loader = PromptLoader()


def get_classifier_prompt(**kwargs) -> str:
    """Get classifier prompt (convenience function)"""
    return _loader.get_classifier_prompt(**kwargs)


def get_reply_prompt(**kwargs) -> str:
    """Get reply prompt (convenience function)"""
    return _loader.get_reply_prompt(**kwargs)


def reload_prompts() -> None:
    """Reload all prompts from disk (convenience function)"""
    _loader.reload()
