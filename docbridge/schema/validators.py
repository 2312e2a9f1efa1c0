"""
Validator engine for DocBridge.

Validators are a closed set of immutable descriptions of accepted value
shapes:
- Primitives: string, number, int64, boolean, null, any
- id(table): a document identifier branded with a table
- optional(inner): the field may be absent
- array, object, record: containers
- union, literal, picklist: alternatives

Each validator exposes validate(value) which returns the validated value or
raises ValidationError carrying the offending field path.

Invariants:
    - Validators never mutate shared state; one instance can validate any
      number of values concurrently
    - Object validators are closed: undeclared fields are rejected
    - optional() accepts absence, never None unless the inner validator does

Example:
    >>> from docbridge.schema.validators import v
    >>> user = v.object({"name": v.string(), "age": v.optional(v.number())})
    >>> user.validate({"name": "Alice"})
    {'name': 'Alice'}
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from difflib import get_close_matches
from types import MappingProxyType, SimpleNamespace
from typing import Any, ClassVar

from ..errors import InvalidIdentifier, SchemaError, ValidationError
from ..ids import parse_id

Path = tuple[str | int, ...]


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _fail(path: Path, message: str) -> ValidationError:
    err = ValidationError(message, path=path)
    if path:
        err.message = f"{message} at '{err.path_str}'"
        err.args = (err.message,)
    return err


class Validator:
    """Base class for all validator variants."""

    kind: ClassVar[str] = "validator"

    @property
    def is_optional(self) -> bool:
        return False

    def validate(self, value: Any, path: Path = ()) -> Any:
        raise NotImplementedError

    def check(self, value: Any) -> bool:
        """Return whether value validates, without raising."""
        try:
            self.validate(value)
        except ValidationError:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind}


@dataclass(frozen=True)
class StringValidator(Validator):
    kind: ClassVar[str] = "string"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if not isinstance(value, str):
            raise _fail(path, f"Expected string, got {_type_name(value)}")
        return value


@dataclass(frozen=True)
class NumberValidator(Validator):
    kind: ClassVar[str] = "number"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _fail(path, f"Expected number, got {_type_name(value)}")
        return value


@dataclass(frozen=True)
class Int64Validator(Validator):
    kind: ClassVar[str] = "int64"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _fail(path, f"Expected integer, got {_type_name(value)}")
        if not -(2**63) <= value < 2**63:
            raise _fail(path, f"Integer {value} does not fit in 64 bits")
        return value


@dataclass(frozen=True)
class BooleanValidator(Validator):
    kind: ClassVar[str] = "boolean"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if not isinstance(value, bool):
            raise _fail(path, f"Expected boolean, got {_type_name(value)}")
        return value


@dataclass(frozen=True)
class NullValidator(Validator):
    kind: ClassVar[str] = "null"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if value is not None:
            raise _fail(path, f"Expected null, got {_type_name(value)}")
        return value


@dataclass(frozen=True)
class AnyValidator(Validator):
    kind: ClassVar[str] = "any"

    def validate(self, value: Any, path: Path = ()) -> Any:
        return value


@dataclass(frozen=True)
class IdValidator(Validator):
    """Accepts identifiers of documents in ``table``."""

    table: str
    kind: ClassVar[str] = "id"

    def validate(self, value: Any, path: Path = ()) -> Any:
        try:
            return parse_id(value, self.table)
        except InvalidIdentifier as e:
            raise _fail(path, f"Expected id for table '{self.table}': {e.message}") from e

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "table": self.table}


@dataclass(frozen=True)
class OptionalValidator(Validator):
    """Marks an object field as optional; delegates present values."""

    inner: Validator
    kind: ClassVar[str] = "optional"

    @property
    def is_optional(self) -> bool:
        return True

    def validate(self, value: Any, path: Path = ()) -> Any:
        return self.inner.validate(value, path)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "inner": self.inner.to_dict()}


@dataclass(frozen=True)
class ArrayValidator(Validator):
    element: Validator
    kind: ClassVar[str] = "array"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if not isinstance(value, (list, tuple)):
            raise _fail(path, f"Expected array, got {_type_name(value)}")
        return [self.element.validate(item, path + (i,)) for i, item in enumerate(value)]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "items": self.element.to_dict()}


@dataclass(frozen=True)
class ObjectValidator(Validator):
    """Closed object shape.

    Declared fields wrapped in optional() may be absent; every other
    declared field is required. Undeclared fields are rejected with
    suggestions for similar names.
    """

    fields: Mapping[str, Validator] = field(default_factory=dict)
    kind: ClassVar[str] = "object"

    def __post_init__(self) -> None:
        for name, validator in self.fields.items():
            if not isinstance(validator, Validator):
                raise SchemaError(f"Field '{name}' is not a validator: {validator!r}")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def __hash__(self) -> int:
        return hash(tuple(self.fields.items()))

    def _check_unknown(self, value: dict[str, Any], path: Path) -> None:
        for name in value:
            if name not in self.fields:
                suggestions = get_close_matches(str(name), list(self.fields), n=3)
                message = f"Unknown field '{name}'"
                if suggestions:
                    message += f". Did you mean: {', '.join(suggestions)}?"
                raise _fail(path + (name,), message)

    def validate(self, value: Any, path: Path = ()) -> Any:
        if not isinstance(value, dict):
            raise _fail(path, f"Expected object, got {_type_name(value)}")
        self._check_unknown(value, path)

        result: dict[str, Any] = {}
        for name, validator in self.fields.items():
            if name not in value:
                if validator.is_optional:
                    continue
                raise _fail(path + (name,), f"Missing required field '{name}'")
            result[name] = validator.validate(value[name], path + (name,))
        return result

    def validate_partial(self, value: Any, path: Path = ()) -> dict[str, Any]:
        """Validate only the fields present in ``value``.

        A None value requests removal of the field and is only accepted for
        optional fields (or fields whose validator accepts null).
        """
        if not isinstance(value, dict):
            raise _fail(path, f"Expected object, got {_type_name(value)}")
        self._check_unknown(value, path)

        result: dict[str, Any] = {}
        for name, item in value.items():
            validator = self.fields[name]
            if item is None and validator.is_optional:
                result[name] = None
                continue
            result[name] = validator.validate(item, path + (name,))
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "fields": {name: validator.to_dict() for name, validator in self.fields.items()},
        }


@dataclass(frozen=True)
class LiteralValidator(Validator):
    value: str | int | float | bool
    kind: ClassVar[str] = "literal"

    def validate(self, value: Any, path: Path = ()) -> Any:
        same_kind = isinstance(value, bool) == isinstance(self.value, bool)
        if not same_kind or value != self.value:
            raise _fail(path, f"Expected literal {self.value!r}, got {value!r}")
        return value

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "value": self.value}


@dataclass(frozen=True)
class UnionValidator(Validator):
    """Accepts a value if any member validates it.

    On total failure, the error of the member that got deepest into the
    value is reported.
    """

    members: tuple[Validator, ...]
    kind: ClassVar[str] = "union"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if not self.members:
            raise _fail(path, "Empty union accepts no values")

        failures: list[ValidationError] = []
        for member in self.members:
            try:
                return member.validate(value, path)
            except ValidationError as e:
                failures.append(e)

        deepest = max(failures, key=lambda e: len(e.path))
        if len(deepest.path) > len(path):
            raise ValidationError(
                f"No union member matched: {deepest.message}",
                path=deepest.path,
                errors=[f.message for f in failures],
            )
        expected = ", ".join(_describe(m) for m in self.members)
        raise ValidationError(
            _fail(path, f"Expected one of [{expected}], got {value!r}").message,
            path=path,
            errors=[f.message for f in failures],
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "members": [m.to_dict() for m in self.members]}


@dataclass(frozen=True)
class RecordValidator(Validator):
    """Mapping with validated keys and values."""

    keys: Validator
    values: Validator
    kind: ClassVar[str] = "record"

    def validate(self, value: Any, path: Path = ()) -> Any:
        if not isinstance(value, dict):
            raise _fail(path, f"Expected object, got {_type_name(value)}")
        result: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise _fail(path, f"Record keys must be strings, got {_type_name(key)}")
            self.keys.validate(key, path + (key,))
            result[key] = self.values.validate(item, path + (key,))
        return result

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "keys": self.keys.to_dict(), "values": self.values.to_dict()}


def _describe(validator: Validator) -> str:
    if isinstance(validator, LiteralValidator):
        return repr(validator.value)
    if isinstance(validator, IdValidator):
        return f"id({validator.table})"
    return validator.kind


# =============================================================================
# Constructors
# =============================================================================

_STRING = StringValidator()
_NUMBER = NumberValidator()
_INT64 = Int64Validator()
_BOOLEAN = BooleanValidator()
_NULL = NullValidator()
_ANY = AnyValidator()


def string() -> Validator:
    return _STRING


def number() -> Validator:
    return _NUMBER


def int64() -> Validator:
    return _INT64


def boolean() -> Validator:
    return _BOOLEAN


def null() -> Validator:
    return _NULL


def any_() -> Validator:
    return _ANY


def id_(table: str) -> Validator:
    return IdValidator(table)


def optional(inner: Validator) -> Validator:
    if isinstance(inner, OptionalValidator):
        return inner
    return OptionalValidator(inner)


def array(element: Validator) -> Validator:
    return ArrayValidator(element)


def object_(fields: Mapping[str, Validator]) -> ObjectValidator:
    return ObjectValidator(fields)


def union(*members: Validator) -> Validator:
    return UnionValidator(tuple(members))


def literal(value: str | int | float | bool) -> Validator:
    return LiteralValidator(value)


def picklist(*values: str | int | float | bool) -> Validator:
    """Union of literals, e.g. picklist("admin", "user")."""
    return UnionValidator(tuple(LiteralValidator(value) for value in values))


def record(keys: Validator, values: Validator) -> Validator:
    return RecordValidator(keys, values)


v = SimpleNamespace(
    string=string,
    number=number,
    float64=number,
    int64=int64,
    boolean=boolean,
    null=null,
    any=any_,
    id=id_,
    optional=optional,
    array=array,
    object=object_,
    union=union,
    literal=literal,
    picklist=picklist,
    record=record,
)


def as_object_validator(
    fields: ObjectValidator | Mapping[str, Validator] | None,
) -> ObjectValidator:
    """Accept either an object validator or a mapping of field validators."""
    if fields is None:
        return ObjectValidator({})
    if isinstance(fields, ObjectValidator):
        return fields
    if isinstance(fields, Validator):
        raise SchemaError(f"Expected object validator, got {fields.kind}")
    return ObjectValidator(fields)


_PRIMITIVES: dict[str, Validator] = {
    "string": _STRING,
    "number": _NUMBER,
    "float64": _NUMBER,
    "int64": _INT64,
    "boolean": _BOOLEAN,
    "null": _NULL,
    "any": _ANY,
}


def validator_from_dict(data: Mapping[str, Any] | str) -> Validator:
    """Rebuild a validator from its to_dict() form.

    A bare string is accepted as shorthand for a primitive type name.

    Raises:
        SchemaError: If the description is malformed
    """
    if isinstance(data, str):
        data = {"type": data}
    if not isinstance(data, Mapping) or "type" not in data:
        raise SchemaError(f"Invalid validator description: {data!r}")

    kind = data["type"]
    if kind in _PRIMITIVES:
        return _PRIMITIVES[kind]
    try:
        if kind == "id":
            return IdValidator(data["table"])
        if kind == "optional":
            return optional(validator_from_dict(data["inner"]))
        if kind == "array":
            return ArrayValidator(validator_from_dict(data["items"]))
        if kind == "object":
            return ObjectValidator(
                {name: validator_from_dict(item) for name, item in data.get("fields", {}).items()}
            )
        if kind == "union":
            return UnionValidator(tuple(validator_from_dict(m) for m in data["members"]))
        if kind == "literal":
            return LiteralValidator(data["value"])
        if kind == "picklist":
            return picklist(*data["values"])
        if kind == "record":
            return RecordValidator(
                validator_from_dict(data["keys"]), validator_from_dict(data["values"])
            )
    except KeyError as e:
        raise SchemaError(f"Validator '{kind}' is missing key {e}") from e
    raise SchemaError(f"Unknown validator type '{kind}'")


def validate_args(
    validator: ObjectValidator | None,
    args: Any,
) -> dict[str, Any]:
    """Validate a function argument payload (None means no arguments)."""
    if args is None:
        args = {}
    if validator is None:
        if not isinstance(args, dict):
            raise ValidationError(f"Arguments must be an object, got {_type_name(args)}")
        return args
    return validator.validate(args)


__all__: Sequence[str] = [
    "Validator",
    "StringValidator",
    "NumberValidator",
    "Int64Validator",
    "BooleanValidator",
    "NullValidator",
    "AnyValidator",
    "IdValidator",
    "OptionalValidator",
    "ArrayValidator",
    "ObjectValidator",
    "LiteralValidator",
    "UnionValidator",
    "RecordValidator",
    "v",
    "as_object_validator",
    "validator_from_dict",
    "validate_args",
]
