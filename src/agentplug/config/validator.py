"""Declarative validation for plugin configuration and tool arguments.

The same rules are used in two places: a plugin's configuration is checked
when it is loaded (or when the plugin re-validates itself during ``init``),
and every tool call's arguments are checked before the handler runs.

Rules per field:
- present: coerced to the declared type, then checked against enum,
  min/max and pattern
- absent and required: reported as ``missing``
- absent and optional: replaced by the declared default, if any

Keys that the schema does not mention are passed through untouched.
"""

import copy
import math
import os
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator

from agentplug.exceptions import ConfigError, ValidationError


class FieldType(str, Enum):
    """Value types a schema field can declare."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"


class FieldSpec(BaseModel):
    """Rules for a single configuration field or tool parameter.

    ``min``/``max`` bound numeric values, and the length of strings and
    arrays. Unknown rule names are rejected, so a misspelt ``required``
    cannot make a field optional. A default only counts as declared when it
    was passed explicitly, so ``FieldSpec(default=None)`` substitutes
    ``None`` while ``FieldSpec()`` leaves the key absent.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: FieldType = FieldType.ANY
    required: bool = False
    default: Any = None
    enum: Optional[list[Any]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "FieldSpec":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min ({self.min}) is greater than max ({self.max})")
        return self

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set

    def to_json_schema(self) -> dict[str, Any]:
        """Render the field as a JSON schema property."""
        prop: dict[str, Any] = {}
        if self.type != FieldType.ANY:
            prop["type"] = self.type.value
        if self.description:
            prop["description"] = self.description
        if self.enum is not None:
            prop["enum"] = list(self.enum)
        if self.has_default:
            prop["default"] = self.default
        if self.type in (FieldType.NUMBER, FieldType.INTEGER):
            if self.min is not None:
                prop["minimum"] = self.min
            if self.max is not None:
                prop["maximum"] = self.max
        if self.pattern:
            prop["pattern"] = self.pattern
        return prop


ValidationSchema = dict[str, FieldSpec]
SchemaLike = Mapping[str, Union[FieldSpec, Mapping[str, Any]]]


def parse_schema(schema: Optional[SchemaLike]) -> ValidationSchema:
    """Turn a mapping of plain dicts into FieldSpec models.

    Args:
        schema: Field name to FieldSpec or dict of FieldSpec arguments

    Returns:
        Mapping of field name to FieldSpec, in declaration order
    """
    if not schema:
        return {}
    parsed: ValidationSchema = {}
    for name, spec in schema.items():
        parsed[name] = spec if isinstance(spec, FieldSpec) else FieldSpec.model_validate(spec)
    return parsed


def validate(
    plugin_name: str,
    raw_config: Optional[Mapping[str, Any]],
    schema: Optional[SchemaLike],
) -> dict[str, Any]:
    """Validate a plugin configuration and fill in defaults.

    Args:
        plugin_name: Plugin whose configuration is being checked
        raw_config: Configuration as supplied by the user
        schema: Declared rules

    Returns:
        New dict with coerced values and defaults applied

    Raises:
        ConfigError: If any field is missing or invalid
    """
    return _validate(plugin_name, raw_config, schema, ConfigError)


def validate_arguments(
    tool_name: str,
    arguments: Optional[Mapping[str, Any]],
    schema: Optional[SchemaLike],
) -> dict[str, Any]:
    """Validate tool call arguments against a parameter schema.

    Raises:
        ValidationError: If any argument is missing or invalid
    """
    return _validate(tool_name, arguments, schema, ValidationError)


def _validate(
    target: str,
    values: Optional[Mapping[str, Any]],
    schema: Optional[SchemaLike],
    error_cls: type[ValidationError],
) -> dict[str, Any]:
    source = dict(values or {})
    fields = parse_schema(schema)
    resolved: dict[str, Any] = dict(source)
    errors: list[tuple[str, str]] = []

    for name, spec in fields.items():
        value = source.get(name)
        if value is None:
            resolved.pop(name, None)
            if spec.required:
                errors.append((name, "missing"))
            elif spec.has_default:
                resolved[name] = copy.deepcopy(spec.default)
            continue

        coerced, reason = _check_field(value, spec)
        if reason is not None:
            errors.append((name, reason))
        else:
            resolved[name] = coerced

    if errors:
        field, reason = errors[0]
        raise error_cls(target, field, reason, errors)
    return resolved


def _check_field(value: Any, spec: FieldSpec) -> tuple[Any, Optional[str]]:
    coerced, ok = _coerce(value, spec.type)
    if not ok:
        return value, f"expected {spec.type.value}"

    if spec.enum is not None and coerced not in spec.enum:
        allowed = ", ".join(repr(v) for v in spec.enum)
        return value, f"must be one of [{allowed}]"

    if spec.min is not None or spec.max is not None:
        if isinstance(coerced, (str, list)):
            measured, label = len(coerced), "length"
        elif isinstance(coerced, (int, float)) and not isinstance(coerced, bool):
            measured, label = coerced, "value"
        else:
            measured, label = None, ""
        if measured is not None:
            if spec.min is not None and measured < spec.min:
                return value, f"{label} must be >= {_fmt(spec.min)}"
            if spec.max is not None and measured > spec.max:
                return value, f"{label} must be <= {_fmt(spec.max)}"

    if spec.pattern and isinstance(coerced, str) and not re.search(spec.pattern, coerced):
        return value, f"does not match pattern {spec.pattern!r}"

    return coerced, None


def _coerce(value: Any, field_type: FieldType) -> tuple[Any, bool]:
    if field_type == FieldType.ANY:
        return value, True

    if field_type == FieldType.STRING:
        return value, isinstance(value, str)

    if field_type == FieldType.BOOLEAN:
        if isinstance(value, bool):
            return value, True
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true", True
        return value, False

    if field_type in (FieldType.NUMBER, FieldType.INTEGER):
        number = _to_number(value)
        if number is None:
            return value, False
        if field_type == FieldType.INTEGER:
            if isinstance(number, float):
                if not number.is_integer():
                    return value, False
                number = int(number)
        return number, True

    if field_type == FieldType.ARRAY:
        if isinstance(value, (list, tuple)):
            return list(value), True
        return value, False

    if field_type == FieldType.OBJECT:
        if isinstance(value, Mapping):
            return dict(value), True
        return value, False

    return value, False


def _to_number(value: Any) -> Optional[Union[int, float]]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _fmt(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def inject_env_vars(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Replace ``${VAR}`` and ``${VAR:default}`` references in a config value.

    Works recursively over dicts, lists and strings. A reference with no
    matching variable and no default is left as written.

    Args:
        value: Configuration value
        environ: Environment to read from (defaults to os.environ)

    Returns:
        New value with references substituted
    """
    env = os.environ if environ is None else environ

    if isinstance(value, str):

        def _replace(match: re.Match[str]) -> str:
            name, default = match.group(1), match.group(2)
            if name in env:
                return env[name]
            if default is not None:
                return default
            return match.group(0)

        return _ENV_PATTERN.sub(_replace, value)

    if isinstance(value, Mapping):
        return {key: inject_env_vars(item, env) for key, item in value.items()}

    if isinstance(value, list):
        return [inject_env_vars(item, env) for item in value]

    return value
