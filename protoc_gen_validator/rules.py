"""
Constraint model
================

Typed representation of the parsed validation rules consumed by the
generator, plus the per-message identifier allocator.

A field carries an ordered tuple of :class:`Rule` objects. Each rule pairs a
:class:`RuleKey` with exactly one operand shape:

- ``specified``: a single :class:`ValidationValue` (``ge``, ``prefix``, ...)
- ``range``: an ordered tuple of values (``in`` / ``not_in``)
- ``inner``: a nested rule tuple applied one level deeper
  (``element`` / ``map_key`` / ``map_value``)

The rule document loader at the bottom of this module turns the JSON form of
an already-parsed rule set into these objects.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .schema import field_accessor


# =============================================================================
# RULE KINDS
# =============================================================================

class RuleKey(Enum):
    """Closed set of rule kinds understood by the generator."""
    NOT_NIL = 'not_nil'
    CONST = 'const'
    LT = 'lt'
    LE = 'le'
    GT = 'gt'
    GE = 'ge'
    IN = 'in'
    NOT_IN = 'not_in'
    MIN_SIZE = 'min_size'
    MAX_SIZE = 'max_size'
    PREFIX = 'prefix'
    SUFFIX = 'suffix'
    CONTAINS = 'contains'
    NOT_CONTAINS = 'not_contains'
    PATTERN = 'pattern'
    DEFINED_ONLY = 'defined_only'
    SKIP = 'skip'
    ASSERT = 'assert'
    NO_SPARSE = 'no_sparse'
    MAP_KEY = 'map_key'
    MAP_VALUE = 'map_value'
    ELEMENT = 'element'


RANGE_RULES = frozenset([RuleKey.IN, RuleKey.NOT_IN])
INNER_RULES = frozenset([RuleKey.ELEMENT, RuleKey.MAP_KEY, RuleKey.MAP_VALUE])


class ValueType(Enum):
    """Tag of the populated :class:`ValidationValue` variant."""
    INT = 'int'
    DOUBLE = 'double'
    BOOL = 'bool'
    BINARY = 'binary'
    FIELD_REFERENCE = 'field_reference'
    FUNCTION = 'function'


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class ToolFunction:
    """
    A function call used as a computed operand.

    Attributes:
        name: Function name, resolved against the built-ins first and then
              against the external function registry.
        arguments: Ordered operands, each itself a ValidationValue.
    """
    name: str
    arguments: Tuple['ValidationValue', ...] = ()


_PYTHON_TYPES = {
    ValueType.INT: (int,),
    ValueType.DOUBLE: (float, int),
    ValueType.BOOL: (bool,),
    ValueType.BINARY: (str,),
    ValueType.FIELD_REFERENCE: (str,),
    ValueType.FUNCTION: (ToolFunction,),
}


@dataclass(frozen=True)
class ValidationValue:
    """
    One rule operand: a literal, a reference to a sibling field, or a call.

    Exactly one variant is populated; ``value_type`` says which one and
    ``value`` holds it.

    Examples:
        >>> ValidationValue.of_int(10)
        ValidationValue(value_type=<ValueType.INT: 'int'>, value=10)
        >>> ValidationValue.of_field('max_age').field_reference_name('m.')
        'm.max_age'
    """
    value_type: ValueType
    value: Any

    def __post_init__(self):
        expected = _PYTHON_TYPES[self.value_type]
        # bool is an int subclass; keep the two literal kinds apart
        if isinstance(self.value, bool) and self.value_type is not ValueType.BOOL:
            raise TypeError('%s value must not be a bool' % self.value_type.value)
        if not isinstance(self.value, expected):
            raise TypeError('%s value must be %s, got %r' % (
                self.value_type.value, '/'.join(t.__name__ for t in expected), self.value))

    @classmethod
    def of_int(cls, value: int) -> 'ValidationValue':
        return cls(ValueType.INT, value)

    @classmethod
    def of_double(cls, value: float) -> 'ValidationValue':
        return cls(ValueType.DOUBLE, float(value))

    @classmethod
    def of_bool(cls, value: bool) -> 'ValidationValue':
        return cls(ValueType.BOOL, value)

    @classmethod
    def of_binary(cls, value: str) -> 'ValidationValue':
        return cls(ValueType.BINARY, value)

    @classmethod
    def of_field(cls, name: str) -> 'ValidationValue':
        return cls(ValueType.FIELD_REFERENCE, name)

    @classmethod
    def of_function(cls, name: str, *arguments: 'ValidationValue') -> 'ValidationValue':
        return cls(ValueType.FUNCTION, ToolFunction(name, tuple(arguments)))

    def field_reference_name(self, prefix: str = 'm.') -> str:
        """Render a field reference as a read from the message variable."""
        if self.value_type is not ValueType.FIELD_REFERENCE:
            raise TypeError('%s value is not a field reference' % self.value_type.value)
        return field_accessor(prefix.rstrip('.'), self.value)


@dataclass(frozen=True)
class Rule:
    """
    A single constraint attached to a field or to a message.

    Attributes:
        key: The rule kind.
        specified: Single operand, for most rule kinds.
        range: Ordered operands for ``in`` / ``not_in``. May be empty.
        inner: Nested rules for ``element`` / ``map_key`` / ``map_value``.
    """
    key: RuleKey
    specified: Optional[ValidationValue] = None
    range: Tuple[ValidationValue, ...] = ()
    inner: Tuple['Rule', ...] = ()

    @property
    def enabled(self) -> bool:
        """True unless this is a boolean flag rule explicitly set to false."""
        if self.specified is not None and self.specified.value_type is ValueType.BOOL:
            return self.specified.value
        return True


@dataclass(frozen=True)
class RuleSet:
    """Rules of one message: message-level rules plus per-field rule lists."""
    message: Tuple[Rule, ...] = ()
    fields: Mapping[str, Tuple[Rule, ...]] = field(default_factory=dict)


# =============================================================================
# IDENTIFIER ALLOCATION
# =============================================================================

class IdAllocator:
    """
    Hands out collision-free temporary names for one message's procedure.

    A fresh allocator is created for every message, so numbering restarts
    at 1 and the output stays stable across runs.
    """

    def __init__(self):
        self._counter = 0

    def allocate(self, prefix: str) -> str:
        self._counter += 1
        return '%s%d' % (prefix, self._counter)


# =============================================================================
# RULE DOCUMENT LOADING
# =============================================================================

class RuleDocumentError(ValueError):
    """The rule document is not well formed."""


def parse_value(raw: Any) -> ValidationValue:
    """Convert one JSON operand into a ValidationValue."""
    if isinstance(raw, bool):
        return ValidationValue.of_bool(raw)
    if isinstance(raw, int):
        return ValidationValue.of_int(raw)
    if isinstance(raw, float):
        return ValidationValue.of_double(raw)
    if isinstance(raw, str):
        return ValidationValue.of_binary(raw)
    if isinstance(raw, dict):
        if set(raw) == {'field'} and isinstance(raw['field'], str):
            return ValidationValue.of_field(raw['field'])
        if 'function' in raw and set(raw) <= {'function', 'args'}:
            name = raw['function']
            if not isinstance(name, str) or not name:
                raise RuleDocumentError('function name must be a non-empty string: %r' % (name,))
            args = raw.get('args', [])
            if not isinstance(args, list):
                raise RuleDocumentError('arguments of %s must be a list' % name)
            return ValidationValue.of_function(name, *[parse_value(a) for a in args])
    raise RuleDocumentError('unsupported operand: %r' % (raw,))


def parse_rule(raw: Any) -> Rule:
    """Convert ``{"<kind>": <operand>}`` into a Rule."""
    if not isinstance(raw, dict) or len(raw) != 1:
        raise RuleDocumentError('a rule must be an object with exactly one key: %r' % (raw,))
    (name, operand), = raw.items()
    try:
        key = RuleKey(name)
    except ValueError:
        raise RuleDocumentError('unknown rule kind %r' % name) from None

    if key in RANGE_RULES:
        if not isinstance(operand, list):
            raise RuleDocumentError('%s expects a list of values' % name)
        return Rule(key, range=tuple(parse_value(v) for v in operand))
    if key in INNER_RULES:
        if not isinstance(operand, list):
            raise RuleDocumentError('%s expects a list of rules' % name)
        return Rule(key, inner=parse_rules(operand))
    return Rule(key, specified=parse_value(operand))


def parse_rules(raw: Iterable[Any]) -> Tuple[Rule, ...]:
    return tuple(parse_rule(r) for r in raw)


def parse_rule_document(document: Mapping[str, Any]) -> Dict[str, RuleSet]:
    """
    Build the message name -> RuleSet mapping from a decoded JSON document.

    Message names are fully qualified without the leading dot
    (``example.Person``, ``example.Outer.Inner``).
    """
    if not isinstance(document, dict):
        raise RuleDocumentError('rule document must be an object')
    result: Dict[str, RuleSet] = {}
    for message_name, body in document.items():
        if not isinstance(body, dict) or not set(body) <= {'message', 'fields'}:
            raise RuleDocumentError('rules of %s must be an object with "message" and/or "fields"'
                                    % message_name)
        fields = body.get('fields', {})
        if not isinstance(fields, dict):
            raise RuleDocumentError('"fields" of %s must be an object' % message_name)
        result[message_name.lstrip('.')] = RuleSet(
            message=parse_rules(body.get('message', [])),
            fields={name: parse_rules(rules) for name, rules in fields.items()},
        )
    return result


def load_rule_document(path: str) -> Dict[str, RuleSet]:
    """Read and parse a JSON rule document from disk."""
    with open(path, 'r', encoding='utf-8') as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as e:
            raise RuleDocumentError('%s: %s' % (path, e)) from e
    return parse_rule_document(document)


def describe(rules: Iterable[Rule]) -> List[str]:
    """Short human-readable rendering of a rule list, used in diagnostics."""
    parts = []
    for rule in rules:
        if rule.key in RANGE_RULES:
            parts.append('%s{%s}' % (rule.key.value, ', '.join(repr(v.value) for v in rule.range)))
        elif rule.key in INNER_RULES:
            parts.append('%s[%s]' % (rule.key.value, '; '.join(describe(rule.inner))))
        elif rule.specified is not None:
            parts.append('%s=%r' % (rule.key.value, rule.specified.value))
        else:
            parts.append(rule.key.value)
    return parts
