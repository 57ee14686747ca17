"""Indented Python source buffer used by the emitters."""

import math
import textwrap
from contextlib import contextmanager
from typing import Iterator, List

INDENT = '    '


def float_literal(value: float) -> str:
    """Python source for a float, including the non-finite values."""
    value = float(value)
    if math.isfinite(value):
        return repr(value)
    return 'float(%r)' % repr(value)


def bytes_literal(value: str) -> str:
    return repr(value.encode('utf-8'))


class CodeWriter:
    """
    Line buffer with block indentation.

    Nothing is written anywhere until the caller asks for ``getvalue()``, so
    a failed generation never leaves partial output behind.
    """

    def __init__(self):
        self._lines: List[str] = []
        self._level = 0
        self._statements = 0

    def line(self, text: str = '') -> None:
        self._lines.append(INDENT * self._level + text if text else '')
        if text and not text.lstrip().startswith('#'):
            self._statements += 1

    def lines(self, text: str) -> None:
        """Emit a multi-line fragment at the current indentation."""
        for line in textwrap.dedent(text).strip('\n').splitlines():
            self.line(line.rstrip())

    def comment(self, text: str) -> None:
        self.line('# ' + text)

    @contextmanager
    def block(self, header: str) -> Iterator[None]:
        """Open an indented block; a body without statements gets a ``pass``."""
        self.line(header)
        self._level += 1
        start = self._statements
        try:
            yield
        finally:
            if self._statements == start:
                self.line('pass')
            self._level -= 1

    def extend(self, other: 'CodeWriter') -> None:
        for line in other._lines:
            self.line(line)

    def getvalue(self) -> str:
        return '\n'.join(self._lines) + '\n'
