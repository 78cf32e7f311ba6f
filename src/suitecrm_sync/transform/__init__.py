"""Transform engine: rules, type coercion, validation and compatibility."""

from src.suitecrm_sync.transform.compatibility import (
    get_compatibility_warning,
    get_compatible_field_types,
    is_compatible,
)
from src.suitecrm_sync.transform.engine import DataTransformer, TransformResult, ValidationResult
from src.suitecrm_sync.transform.rules import (
    TransformContext,
    apply_transform_rule,
    get_transform_rules,
    is_auto_generate_rule,
)

__all__ = [
    "DataTransformer",
    "TransformContext",
    "TransformResult",
    "ValidationResult",
    "apply_transform_rule",
    "get_compatibility_warning",
    "get_compatible_field_types",
    "get_transform_rules",
    "is_auto_generate_rule",
    "is_compatible",
]
