"""
Label schema manager.

Read-only view over the object-format label schema of one or more business
types: colors, provisioning order, critical labels, n8n environment variable
names and diffs against labels that already exist in a mailbox.
"""

from __future__ import annotations

from typing import Any

from floworx.schemas.ai_merger import merge_ai_schemas, merge_label_schemas
from floworx.schemas.label_merger import is_standard_category
from floworx.schemas.loader import BusinessSchemaLoader, get_schema_loader


class LabelSchemaManager:
    """
    Usage:
        manager = LabelSchemaManager(["HVAC", "Plumber"])
        manager.initialize()
        manager.get_provisioning_order()
    """

    def __init__(
        self,
        business_types: str | list[str],
        schema_loader: BusinessSchemaLoader | None = None,
    ) -> None:
        if isinstance(business_types, str):
            business_types = [business_types]
        self.business_types = list(business_types)
        self.schema_loader = schema_loader or get_schema_loader()
        self.schema: dict[str, Any] | None = None

    def initialize(self) -> None:
        """
        Raises:
            SchemaNotFoundError: A single unknown business type was requested
        """
        if len(self.business_types) == 1:
            schema = self.schema_loader.load_schema(self.business_types[0])
            schema["labelSchema"] = merge_label_schemas([schema])
        else:
            schema = merge_ai_schemas(self.business_types)
            if "labelSchema" not in schema:
                schema["labelSchema"] = merge_label_schemas([schema])
        self.schema = schema

    def _label_schema(self) -> dict[str, Any]:
        if self.schema is None:
            raise RuntimeError("Label schema manager not initialized. Call initialize() first.")
        return self.schema["labelSchema"]

    def _labels(self) -> dict[str, dict[str, Any]]:
        return self._label_schema()["labels"]

    def get_label_schema(self) -> dict[str, Any]:
        return self._label_schema()

    def get_label_colors(self) -> dict[str, dict[str, str]]:
        return self._label_schema()["colors"]

    def get_provisioning_order(self) -> list[str]:
        return self._label_schema()["provisioningOrder"]

    def get_category_groups(self) -> dict[str, list[str]]:
        """Labels grouped as core (standard), industry and critical."""
        labels = self._labels()
        return {
            "core": [name for name in labels if is_standard_category(name)],
            "industry": [name for name in labels if not is_standard_category(name)],
            "critical": self.get_critical_labels(),
        }

    def get_all_labels(self) -> dict[str, dict[str, Any]]:
        return self._labels()

    def get_critical_labels(self) -> list[str]:
        return [name for name, config in self._labels().items() if config.get("critical")]

    def get_labels_by_intent(self, intent: str) -> list[str]:
        return [name for name, config in self._labels().items() if config.get("intent") == intent]

    def get_sub_labels(self, parent_label: str) -> list[str]:
        config = self._labels().get(parent_label) or {}
        return list(config.get("sub", []))

    def get_nested_labels(self, parent_label: str, sub_label: str) -> list[str]:
        config = self._labels().get(parent_label) or {}
        return list((config.get("nested") or {}).get(sub_label, []))

    def get_n8n_env_var(self, label_name: str) -> str | None:
        config = self._labels().get(label_name) or {}
        return config.get("n8nEnvVar")

    def convert_to_standard_labels(self) -> list[dict[str, Any]]:
        """Nested ``{name, sub}`` tree in schema order."""
        tree = []
        for parent_name, config in self._labels().items():
            nested = config.get("nested") or {}
            tree.append(
                {
                    "name": parent_name,
                    "sub": [
                        {
                            "name": sub_name,
                            "sub": [{"name": n, "sub": []} for n in nested.get(sub_name, [])],
                        }
                        for sub_name in config.get("sub", [])
                    ],
                }
            )
        return tree

    def generate_n8n_environment_variables(self, label_map: dict[str, str]) -> dict[str, str]:
        """Map provisioned label ids onto each label's n8nEnvVar."""
        labels = self._labels()
        env_vars: dict[str, str] = {}
        for label_name, label_id in label_map.items():
            env_var = (labels.get(label_name) or {}).get("n8nEnvVar")
            if env_var:
                env_vars[env_var] = label_id
        return env_vars

    def diff_label_schema(self, existing_labels: list[str]) -> dict[str, list[str]]:
        labels = self._labels()
        existing = set(existing_labels)
        missing = [name for name in labels if name not in existing]
        return {
            "missing": missing,
            "extras": [name for name in existing_labels if name not in labels],
            "critical_missing": [name for name in missing if labels[name].get("critical")],
        }

    def get_schema_statistics(self) -> dict[str, int]:
        configs = list(self._labels().values())
        return {
            "total_labels": len(configs),
            "critical_labels": sum(1 for c in configs if c.get("critical")),
            "labels_with_sub": sum(1 for c in configs if c.get("sub")),
            "labels_with_nested": sum(1 for c in configs if c.get("nested")),
            "category_groups": len(self.get_category_groups()),
            "intents": len({c["intent"] for c in configs if c.get("intent")}),
        }

    def validate_schema_integrity(self) -> dict[str, Any]:
        labels = self._labels()
        order = self.get_provisioning_order()
        errors: list[str] = []
        warnings: list[str] = []

        missing_in_order = [name for name in labels if name not in order]
        if missing_in_order:
            errors.append(f"Labels missing from provisioning order: {', '.join(missing_in_order)}")
        extra_in_order = [name for name in order if name not in labels]
        if extra_in_order:
            warnings.append(f"Extra labels in provisioning order: {', '.join(extra_in_order)}")

        intents = [c["intent"] for c in labels.values() if c.get("intent")]
        duplicates = sorted({i for i in intents if intents.count(i) > 1})
        if duplicates:
            warnings.append(f"Duplicate intents found: {', '.join(duplicates)}")

        return {"is_valid": not errors, "errors": errors, "warnings": warnings}
