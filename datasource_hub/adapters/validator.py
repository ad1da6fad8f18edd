"""
Configuration schema validation.

Pure function over (schema, config); collects every violation instead of
stopping at the first one so a UI can show all problems at once.
"""

import re
from collections.abc import Mapping
from typing import Any, Callable, Dict, List

from datasource_hub.models import ConfigurationSchema, PropertyType, SchemaProperty, ValidationResult


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    PropertyType.STRING.value: lambda v: isinstance(v, str),
    PropertyType.PASSWORD.value: lambda v: isinstance(v, str),
    PropertyType.NUMBER.value: _is_number,
    PropertyType.INTEGER.value: _is_integer,
    PropertyType.BOOLEAN.value: lambda v: isinstance(v, bool),
    PropertyType.ARRAY.value: lambda v: isinstance(v, (list, tuple)),
    PropertyType.OBJECT.value: lambda v: isinstance(v, Mapping),
    PropertyType.SELECT.value: lambda v: True,
}


def validate(schema: ConfigurationSchema, config: Mapping) -> ValidationResult:
    """
    Validate a connection configuration against a plugin's schema.

    Args:
        schema: The plugin's declared configuration schema
        config: Candidate configuration

    Returns:
        ValidationResult; ``valid`` is true iff there are no errors
    """
    errors: List[str] = []
    warnings: List[str] = []

    for name in schema.required:
        if config.get(name) is None:
            errors.append(f"Missing required property: {name}")

    for name, value in config.items():
        prop = schema.properties.get(name)
        if prop is None:
            if not schema.additional_properties:
                warnings.append(f"Unknown property: {name}")
            continue
        if value is None:
            continue
        errors.extend(_check_property(name, prop, value))

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def _check_property(name: str, prop: SchemaProperty, value: Any) -> List[str]:
    problems: List[str] = []
    prop_type = prop.type.value if isinstance(prop.type, PropertyType) else prop.type

    type_ok = _TYPE_CHECKS.get(prop_type, lambda v: True)(value)
    if not type_ok:
        problems.append(f"Property {name} must be of type {prop_type}, got {type(value).__name__}")

    if type_ok and isinstance(value, str):
        if prop.min_length is not None and len(value) < prop.min_length:
            problems.append(f"Property {name} must be at least {prop.min_length} characters")
        if prop.max_length is not None and len(value) > prop.max_length:
            problems.append(f"Property {name} must be at most {prop.max_length} characters")
        if prop.pattern is not None:
            try:
                if re.search(prop.pattern, value) is None:
                    problems.append(f"Property {name} does not match pattern {prop.pattern}")
            except re.error as e:
                problems.append(f"Property {name} has an invalid pattern {prop.pattern!r}: {e}")

    if type_ok and _is_number(value):
        if prop.minimum is not None and value < prop.minimum:
            problems.append(f"Property {name} must be >= {prop.minimum:g}")
        if prop.maximum is not None and value > prop.maximum:
            problems.append(f"Property {name} must be <= {prop.maximum:g}")

    if prop.enum is not None and value not in prop.enum:
        problems.append(f"Property {name} must be one of {prop.enum}")

    return problems
