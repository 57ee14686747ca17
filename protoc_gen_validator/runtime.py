"""
Runtime support for generated ``*_validate.py`` modules.

Generated validate functions return None for a valid message and raise
:class:`ValidationError` for the first violated rule. Failures of nested
messages are re-raised wrapped in an ``embedded`` error naming the enclosing
field, with the original failure kept as ``__cause__``.
"""

import struct
from typing import Any, List, Optional, Union

EMBEDDED = 'embedded'
ASSERT = 'assert'
SIZE_RULES = frozenset(['min_size', 'max_size'])


class ValidationError(ValueError):
    """
    A message failed one of its validation rules.

    Attributes:
        field: Label of the offending field, e.g. ``age``, ``tags[2]`` or
               ``labels['k']``; the message name for ``assert`` failures.
        rule: Kind of the violated rule (``ge``, ``min_size``, ...), or
              ``embedded`` when wrapping the failure of a nested message.
        value: The offending value, or the element count for size rules.
    """

    def __init__(self, field: str, rule: str, value: Any = None):
        super().__init__(field, rule, value)
        self.field = field
        self.rule = rule
        self.value = value

    def __str__(self):
        if self.rule == EMBEDDED:
            return 'field %s not valid, %s' % (self.field, self.__cause__)
        if self.rule == ASSERT:
            return 'message %s assertion failed' % self.field
        if self.rule in SIZE_RULES:
            return 'field %s %s rule failed, current size: %d' % (self.field, self.rule, self.value)
        return 'field %s %s rule failed, current value: %r' % (self.field, self.rule, self.value)

    @property
    def cause(self) -> Optional['ValidationError']:
        cause = self.__cause__
        return cause if isinstance(cause, ValidationError) else None

    def chain(self) -> List['ValidationError']:
        """This error followed by every wrapped cause, outermost first."""
        errors = []
        error: Optional[ValidationError] = self
        while error is not None:
            errors.append(error)
            error = error.cause
        return errors

    @property
    def root(self) -> 'ValidationError':
        """The deepest failure, the one naming the actually violated rule."""
        return self.chain()[-1]

    @property
    def path(self) -> str:
        return '.'.join(e.field for e in self.chain())


def float32(value: float) -> float:
    """Round a Python float to the nearest IEEE 754 single precision value."""
    return struct.unpack('<f', struct.pack('<f', value))[0]


def as_bytes(value: Union[str, bytes]) -> bytes:
    """Coerce a regular expression pattern so it can be matched against bytes."""
    if isinstance(value, str):
        return value.encode('utf-8')
    return bytes(value)
