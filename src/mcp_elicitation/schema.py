"""
Requested-schema models and the reply payload validator.

A requested schema is the restricted JSON Schema subset that elicitation allows:
a flat object whose properties are primitives (string, number, integer, boolean),
optionally constrained by format, numeric bounds, length bounds or an enum.
"""

import math
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Literal, Mapping, Tuple

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from mcp_elicitation.errors import InvalidRequestedSchema, SchemaViolation

PrimitiveType = Literal["string", "number", "integer", "boolean"]
StringFormat = Literal["email", "uri", "date", "date-time"]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL_ADAPTER = TypeAdapter(AnyUrl)


class PrimitiveSchema(BaseModel):
    """Schema for a single reply field."""

    type: PrimitiveType
    """The primitive JSON type of the field."""

    title: str | None = None

    description: str | None = None
    """Human-readable hint shown to the peer when asking for this field."""

    format: StringFormat | None = None
    """Lexical format for string fields."""

    minimum: float | None = None
    maximum: float | None = None

    minLength: int | None = Field(default=None, ge=0)
    maxLength: int | None = Field(default=None, ge=0)

    enum: List[str] | None = None
    """Allowed values for string fields."""

    default: str | int | float | bool | None = None

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="after")
    def _check_constraints(self) -> "PrimitiveSchema":
        if self.format is not None and self.type != "string":
            raise ValueError(f"format is only allowed on string fields, not {self.type}")
        if self.enum is not None and self.type != "string":
            raise ValueError(f"enum is only allowed on string fields, not {self.type}")
        if (
            self.minimum is not None
            and self.maximum is not None
            and self.minimum > self.maximum
        ):
            raise ValueError("minimum must not exceed maximum")
        return self


class RequestedSchema(BaseModel):
    """The declared shape of an elicitation reply."""

    type: Literal["object"] = "object"
    properties: Dict[str, PrimitiveSchema] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="after")
    def _check_required(self) -> "RequestedSchema":
        unknown = [name for name in self.required if name not in self.properties]
        if unknown:
            raise ValueError(f"required fields not declared in properties: {unknown}")
        return self

    @classmethod
    def from_dict(cls, schema: Mapping[str, Any]) -> "RequestedSchema":
        """Build a schema from its wire form, raising InvalidRequestedSchema on error."""
        try:
            return cls.model_validate(schema)
        except ValidationError as e:
            raise InvalidRequestedSchema(f"Invalid requested schema: {e}") from e

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def coerce_schema(schema: "RequestedSchema | Mapping[str, Any]") -> RequestedSchema:
    if isinstance(schema, RequestedSchema):
        return schema
    return RequestedSchema.from_dict(schema)


def _is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def _is_uri(value: str) -> bool:
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError:
        return False
    return True


def _is_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_date_time(value: str) -> bool:
    # RFC 3339 requires the time part
    if "t" not in value.lower():
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        return False
    return True


_FORMAT_CHECKS: Dict[str, Callable[[str], bool]] = {
    "email": _is_email,
    "uri": _is_uri,
    "date": _is_date,
    "date-time": _is_date_time,
}


def _matches_type(value: Any, field_type: PrimitiveType) -> bool:
    # bool is a subclass of int in Python, but not a number in JSON
    if field_type == "boolean":
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if field_type == "string":
        return isinstance(value, str)
    if field_type == "integer":
        return isinstance(value, int) or (
            isinstance(value, float) and value.is_integer()
        )
    if field_type == "number":
        # ints are exact; only floats can be inf or nan
        return isinstance(value, int) or (isinstance(value, float) and math.isfinite(value))
    return False


def _check_field(value: Any, schema: PrimitiveSchema) -> List[str]:
    if not _matches_type(value, schema.type):
        return [f"expected {schema.type}, got {type(value).__name__}"]

    problems: List[str] = []
    if schema.type == "string":
        if schema.minLength is not None and len(value) < schema.minLength:
            problems.append(f"must be at least {schema.minLength} characters")
        if schema.maxLength is not None and len(value) > schema.maxLength:
            problems.append(f"must be at most {schema.maxLength} characters")
        if schema.enum is not None and value not in schema.enum:
            problems.append(f"must be one of {schema.enum}")
        if schema.format is not None and not _FORMAT_CHECKS[schema.format](value):
            problems.append(f"is not a valid {schema.format}")
    else:
        if schema.minimum is not None and value < schema.minimum:
            problems.append(f"must be >= {schema.minimum:g}")
        if schema.maximum is not None and value > schema.maximum:
            problems.append(f"must be <= {schema.maximum:g}")
    return problems


def validate_payload(
    payload: Mapping[str, Any] | None,
    schema: "RequestedSchema | Mapping[str, Any]",
) -> Dict[str, Any]:
    """
    Validate a reply payload against a requested schema.

    Every required field must be present and non-null, and every declared field
    that is present must satisfy its type and constraints. Fields the schema does
    not declare are passed through untouched.

    Returns:
        A copy of the payload, unchanged.

    Raises:
        SchemaViolation: listing every violation found; nothing is partially accepted.
    """
    schema = coerce_schema(schema)
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise SchemaViolation([("$", "payload must be an object")])

    violations: List[Tuple[str, str]] = []
    for name in schema.required:
        if payload.get(name) is None:
            violations.append((name, "required field is missing"))

    for name, value in payload.items():
        field_schema = schema.properties.get(name)
        if field_schema is None or value is None:
            continue
        violations.extend((name, problem) for problem in _check_field(value, field_schema))

    if violations:
        raise SchemaViolation(violations)
    return dict(payload)
