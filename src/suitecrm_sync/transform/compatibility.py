"""Question type -> CRM field type compatibility matrix.

Advisory only: mismatches produce a warning for the mapping editor, the
transformer still attempts the conversion.
"""

from __future__ import annotations

_DEFAULT_TYPES: tuple[str, ...] = ("varchar", "text")

# LimeSurvey question type code -> CRM field types it maps cleanly onto
TYPE_COMPATIBILITY: dict[str, tuple[str, ...]] = {
    "S": ("varchar", "text", "email", "phone", "url", "name"),
    "T": ("text", "varchar"),
    "U": ("text", "varchar"),
    "L": ("varchar", "enum"),
    "!": ("varchar", "enum"),
    "O": ("varchar", "enum", "text"),
    "M": ("multienum", "text", "varchar"),
    "P": ("multienum", "text", "varchar"),
    "A": ("varchar", "enum", "int"),
    "B": ("varchar", "enum", "int"),
    "C": ("varchar", "enum"),
    "E": ("varchar", "enum"),
    "F": ("varchar", "enum", "text"),
    "H": ("varchar", "enum", "text"),
    "D": ("date", "datetime", "varchar"),
    "N": ("int", "float", "decimal", "currency", "varchar"),
    "K": ("int", "float", "decimal", "varchar"),
    "Q": ("text", "varchar"),
    ";": ("text", "varchar"),
    ":": ("text", "varchar"),
    "R": ("varchar", "text"),
    "G": ("enum", "varchar"),
    "Y": ("bool", "varchar", "enum"),
    "I": ("varchar", "text"),
    "*": ("varchar", "text"),
    "|": ("varchar", "text"),
    "X": (),  # text display, carries no answer
}

QUESTION_TYPE_NAMES: dict[str, str] = {
    "S": "Short Text",
    "T": "Long Text",
    "U": "Huge Text",
    "L": "List (Radio)",
    "!": "List (Dropdown)",
    "O": "List with Comment",
    "M": "Multiple Choice",
    "P": "Multiple Choice with Comments",
    "D": "Date",
    "N": "Numerical",
    "K": "Multiple Numerical",
    "Q": "Multiple Short Text",
    "Y": "Yes/No",
    "G": "Gender",
}


def question_type_name(question_type: str) -> str:
    """Human-readable name for a question type code."""
    return QUESTION_TYPE_NAMES.get(question_type, f"Type {question_type}")


def get_compatible_field_types(question_type: str) -> list[str]:
    """CRM field types a question type maps onto (varchar/text if unknown)."""
    return list(TYPE_COMPATIBILITY.get(question_type, _DEFAULT_TYPES))


def is_compatible(question_type: str, crm_type: str) -> bool:
    return crm_type in get_compatible_field_types(question_type)


def get_compatibility_warning(question_type: str, crm_type: str) -> str | None:
    """Return a mismatch warning, or None when the types are compatible."""
    if is_compatible(question_type, crm_type):
        return None
    recommended = ", ".join(get_compatible_field_types(question_type)) or "none"
    return (
        f"Question type '{question_type_name(question_type)}' may not be compatible "
        f"with CRM field type '{crm_type}'. Recommended types: {recommended}"
    )
