"""
Business-type schema loader.

Each supported vertical ships an ``<id>.ai.json`` file that extends
``base.ai.schema.json``. Loading a vertical merges it onto the base, validates
the result and caches it in an LRU cache so repeated provisioning and prompt
generation calls do not touch the filesystem.

Business types may be referenced by id ("pools_spas"), display name
("Pools & Spas") or any alias listed in the vertical file ("Hot tub & Spa").
"""

from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any

from cachetools import LRUCache

from floworx.config import SCHEMA_CACHE_SIZE
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event

logger = get_logger(__name__)

SCHEMA_DATA_DIR = Path(__file__).parent / "data"
BASE_SCHEMA_FILE = "base.ai.schema.json"

SCHEMA_REGISTRY: dict[str, str] = {
    "pools_spas": "pools_spas.ai.json",
    "roofing_contractor": "roofing_contractor.ai.json",
    "hvac": "hvac.ai.json",
    "electrician": "electrician.ai.json",
    "plumber": "plumber.ai.json",
    "painting_contractor": "painting_contractor.ai.json",
    "flooring_contractor": "flooring_contractor.ai.json",
    "landscaping": "landscaping.ai.json",
    "general_contractor": "general_contractor.ai.json",
}

# Always taken from the child, regardless of allowOverride
CHILD_IDENTITY_FIELDS = ("businessType", "schemaVersion", "lastUpdated", "author", "description")


class SchemaNotFoundError(LookupError):
    """Raised when a business type has no registered schema"""


class SchemaValidationError(ValueError):
    """Raised when a merged schema fails validation; carries every issue found"""

    def __init__(self, business_type: str, issues: list[str]) -> None:
        self.business_type = business_type
        self.issues = issues
        super().__init__(f"Schema for {business_type} is invalid: {'; '.join(issues)}")


def _iter_labels(labels: list[dict[str, Any]]):
    """Yield every label in a nested label list, depth first."""
    for label in labels:
        yield label
        yield from _iter_labels(label.get("sub") or [])


def merge_with_base(base: dict[str, Any], child: dict[str, Any]) -> dict[str, Any]:
    """
    Merge a vertical schema onto the base schema.

    Fields listed in the child's ``inheritance.allowOverride`` (falling back to
    the base's list) replace base values; dicts are shallow-merged. Labels are
    the base systemLabels followed by the child's labels. Neither input is
    mutated.
    """
    merged = copy.deepcopy(base)

    allow_override = (child.get("inheritance") or {}).get("allowOverride") or (
        base.get("inheritance") or {}
    ).get("allowOverride", [])

    for field in allow_override:
        if field not in child:
            continue
        value = copy.deepcopy(child[field])
        if isinstance(value, dict) and isinstance(merged.get(field), dict):
            merged[field] = {**merged[field], **value}
        else:
            merged[field] = value

    for field in CHILD_IDENTITY_FIELDS:
        if field in child:
            merged[field] = child[field]

    merged["displayName"] = child.get("displayName", child.get("businessType"))
    merged["aliases"] = list(child.get("aliases", []))
    merged["compatibilityKey"] = child.get("compatibilityKey", merged["displayName"])

    merged["labels"] = copy.deepcopy(base.get("systemLabels", [])) + copy.deepcopy(
        child.get("labels", [])
    )
    merged["escalationRules"] = {
        **copy.deepcopy(base.get("escalationRules", {})),
        **copy.deepcopy(child.get("escalationRules", {})),
    }
    return merged


def collect_schema_issues(schema: dict[str, Any]) -> list[str]:
    """Return every validation problem in a merged schema (empty when valid)."""
    issues: list[str] = []

    required = (schema.get("validation") or {}).get("requiredFields", [])
    for field in required:
        if field not in schema or schema[field] in (None, "", [], {}):
            issues.append(f"Missing required field: {field}")

    labels = schema.get("labels") or []
    label_names = {label["name"] for label in _iter_labels(labels) if label.get("name")}
    for intent, target in (schema.get("intentRouting") or {}).items():
        if target not in label_names:
            issues.append(f"Intent {intent} routes to unknown label: {target}")

    seen_env_vars: set[str] = set()
    for label in _iter_labels(labels):
        env_var = label.get("n8nEnvVar")
        if not env_var:
            continue
        if env_var in seen_env_vars:
            issues.append(f"Duplicate n8nEnvVar: {env_var}")
        seen_env_vars.add(env_var)

    return issues


class BusinessSchemaLoader:
    """
    Loads, merges, validates and caches business-type schemas.

    Thread-safe: the LRU cache is guarded by a lock so FastAPI worker threads
    can share one loader.
    """

    def __init__(self, data_dir: Path | None = None, cache_size: int = SCHEMA_CACHE_SIZE) -> None:
        self.data_dir = data_dir or SCHEMA_DATA_DIR
        self._cache: LRUCache = LRUCache(maxsize=cache_size)
        self._lock = threading.Lock()
        self._aliases: dict[str, str] | None = None
        self._hits = 0
        self._misses = 0

    def _read_json(self, filename: str) -> dict[str, Any]:
        path = self.data_dir / filename
        if not path.exists():
            raise SchemaNotFoundError(f"Schema file not found: {path}")
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _alias_index(self) -> dict[str, str]:
        """Lower-cased id/displayName/alias -> business type id."""
        if self._aliases is None:
            index: dict[str, str] = {}
            for type_id, filename in SCHEMA_REGISTRY.items():
                index[type_id.lower()] = type_id
                try:
                    raw = self._read_json(filename)
                except (SchemaNotFoundError, json.JSONDecodeError) as e:
                    logger.warning("Could not index aliases for %s: %s", type_id, e)
                    continue
                for name in [raw.get("displayName"), *raw.get("aliases", [])]:
                    if name:
                        index[name.strip().lower()] = type_id
            self._aliases = index
        return self._aliases

    def resolve_business_type(self, business_type: str) -> str:
        """
        Map an id, display name or alias to a registered id.

        Raises:
            SchemaNotFoundError: If the name matches nothing in the registry
        """
        key = (business_type or "").strip().lower()
        type_id = self._alias_index().get(key)
        if type_id is None:
            raise SchemaNotFoundError(f"No schema registered for business type: {business_type}")
        return type_id

    def load_base_schema(self) -> dict[str, Any]:
        with self._lock:
            cached = self._cache.get("__base__")
        if cached is None:
            cached = self._read_json(BASE_SCHEMA_FILE)
            with self._lock:
                self._cache["__base__"] = cached
        return copy.deepcopy(cached)

    def load_schema(self, business_type: str) -> dict[str, Any]:
        """
        Load the merged and validated schema for a business type.

        Returns a deep copy so callers may mutate the result freely.

        Raises:
            SchemaNotFoundError: Unknown business type or missing file
            SchemaValidationError: Merged schema fails validation

        Side Effects:
            - Reads JSON files from the package data directory on a cache miss
            - Populates the LRU cache
        """
        type_id = self.resolve_business_type(business_type)

        with self._lock:
            cached = self._cache.get(type_id)
            if cached is not None:
                self._hits += 1
        if cached is not None:
            counter("schemas.cache_hit")
            return copy.deepcopy(cached)

        with self._lock:
            self._misses += 1
        counter("schemas.cache_miss")

        base = self.load_base_schema()
        child = self._read_json(SCHEMA_REGISTRY[type_id])
        merged = merge_with_base(base, child)

        issues = collect_schema_issues(merged)
        if issues:
            log_event("schemas.validation_failed", business_type=type_id, issues=len(issues))
            raise SchemaValidationError(type_id, issues)

        with self._lock:
            self._cache[type_id] = merged
        logger.debug("Loaded schema %s (%d labels)", type_id, len(merged["labels"]))
        return copy.deepcopy(merged)

    def load_all_schemas(self) -> dict[str, dict[str, Any]]:
        """Every registered schema keyed by id; failures are skipped with a warning."""
        schemas: dict[str, dict[str, Any]] = {}
        for type_id in SCHEMA_REGISTRY:
            try:
                schemas[type_id] = self.load_schema(type_id)
            except (SchemaNotFoundError, SchemaValidationError, json.JSONDecodeError) as e:
                logger.warning("Skipping schema %s: %s", type_id, e)
        return schemas

    def get_available_business_types(self) -> list[str]:
        return list(SCHEMA_REGISTRY)

    def is_business_type_supported(self, business_type: str) -> bool:
        try:
            self.resolve_business_type(business_type)
        except SchemaNotFoundError:
            return False
        return True

    def get_business_type_metadata(self, business_type: str) -> dict[str, Any]:
        schema = self.load_schema(business_type)
        return {
            "businessType": schema["businessType"],
            "displayName": schema.get("displayName"),
            "aliases": schema.get("aliases", []),
            "description": schema.get("description"),
            "schemaVersion": schema.get("schemaVersion"),
            "lastUpdated": schema.get("lastUpdated"),
            "author": schema.get("author"),
            "labelCount": len(schema.get("labels", [])),
            "serviceCategories": schema.get("serviceCategories", []),
        }

    def get_compatibility_key(self, business_type: str) -> str:
        """
        Name a business type goes by in the composition compatibility table.

        Raises:
            SchemaNotFoundError: If the name matches nothing in the registry
        """
        type_id = self.resolve_business_type(business_type)
        raw = self._read_json(SCHEMA_REGISTRY[type_id])
        return raw.get("compatibilityKey") or raw.get("displayName") or type_id

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def get_cache_stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._cache),
                "maxsize": int(self._cache.maxsize),
                "hits": self._hits,
                "misses": self._misses,
            }


_loader: BusinessSchemaLoader | None = None
_loader_lock = threading.Lock()


def get_schema_loader() -> BusinessSchemaLoader:
    """Process-wide loader instance."""
    global _loader
    if _loader is None:
        with _loader_lock:
            if _loader is None:
                _loader = BusinessSchemaLoader()
    return _loader


def load_schema(business_type: str) -> dict[str, Any]:
    return get_schema_loader().load_schema(business_type)


def load_all_schemas() -> dict[str, dict[str, Any]]:
    return get_schema_loader().load_all_schemas()


def get_available_business_types() -> list[str]:
    return get_schema_loader().get_available_business_types()


def is_business_type_supported(business_type: str) -> bool:
    return get_schema_loader().is_business_type_supported(business_type)


def get_business_type_metadata(business_type: str) -> dict[str, Any]:
    return get_schema_loader().get_business_type_metadata(business_type)


def clear_cache() -> None:
    get_schema_loader().clear_cache()


def get_cache_stats() -> dict[str, int]:
    return get_schema_loader().get_cache_stats()
