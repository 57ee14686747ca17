"""Generation-time errors."""

from typing import Optional


class GenerationError(Exception):
    """
    A rule set that cannot be compiled into validation code.

    Raised deep inside compilation with only a reason, then located on the way
    out: the field compiler fills in ``field`` and ``rule``, the message loop
    fills in ``message`` and the file generator fills in ``schema``.
    """

    def __init__(self, reason: str, schema: Optional[str] = None, message: Optional[str] = None,
                 field: Optional[str] = None, rule: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.schema = schema
        self.message = message
        self.field = field
        self.rule = rule

    def locate(self, schema: Optional[str] = None, message: Optional[str] = None,
               field: Optional[str] = None, rule: Optional[str] = None) -> 'GenerationError':
        """Fill in location details that are still unknown; innermost wins."""
        if self.schema is None:
            self.schema = schema
        if self.message is None:
            self.message = message
        if self.field is None:
            self.field = field
        if self.rule is None:
            self.rule = rule
        return self

    def __str__(self):
        parts = []
        if self.schema:
            parts.append(self.schema)
        if self.message:
            parts.append('message %s' % self.message)
        if self.field:
            parts.append('field %s' % self.field)
        if self.rule:
            parts.append('rule %s' % self.rule)
        parts.append(self.reason)
        return ': '.join(parts)
