"""
Business-type schemas: loading, label trees and multi-business merging.
"""

from floworx.schemas.ai_merger import (
    extract_label_schema,
    get_merged_ai_schema_from_profile,
    merge_ai_schemas,
    validate_merged_ai_schema,
)
from floworx.schemas.label_merger import (
    STANDARD_CATEGORIES,
    get_merged_schema_from_profile,
    merge_business_type_schemas,
    validate_merged_schema,
)
from floworx.schemas.labels_base import (
    get_base_label_schema,
    get_complete_schema_for_business,
    replace_dynamic_variables,
)
from floworx.schemas.loader import (
    BusinessSchemaLoader,
    SchemaNotFoundError,
    SchemaValidationError,
    get_schema_loader,
    load_schema,
)

__all__ = [
    # Loader
    "BusinessSchemaLoader",
    "SchemaNotFoundError",
    "SchemaValidationError",
    "get_schema_loader",
    "load_schema",
    # Label trees
    "get_base_label_schema",
    "get_complete_schema_for_business",
    "replace_dynamic_variables",
    # Mergers
    "STANDARD_CATEGORIES",
    "merge_business_type_schemas",
    "get_merged_schema_from_profile",
    "validate_merged_schema",
    "merge_ai_schemas",
    "get_merged_ai_schema_from_profile",
    "extract_label_schema",
    "validate_merged_ai_schema",
]
