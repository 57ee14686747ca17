#!/usr/bin/env python3
# kate: replace-tabs on; indent-width 4;

"""
Function compiler
=================

Computes rule operands that are function calls rather than literals, such as
``le = len(items)`` or ``const = sprintf("%s-%d", prefix, id)``.

Every function, built-in or configured, implements the same small
capability interface (:class:`Function`):

- ``render(source, schema, function, arguments)`` returns the Python
  statement(s) binding the result to the temporary name ``source``
- ``render_in(source, scope, function, arguments)`` is what the compiler
  calls; it defaults to ``render`` and lets ``len`` inspect the referenced field
- ``imports(schema)`` lists the modules the rendered code needs

Built-ins
---------
- ``len(field)``: element or byte count of a referenced field
- ``sprintf(format, args...)``: formatted string, Go style verbs accepted
- ``equal(a, b)``, ``mod(a, b)``, ``add(a, b)``: binary operators
- ``now_unix_nano()``: current time in nanoseconds, read at validation time

Any other name is looked up in the :class:`FunctionRegistry`, whose entries
are Jinja2 templates loaded from configuration. A template may define an
``Import`` macro listing required modules, one bracketed path per line::

    {% macro Import() %}
    "ipaddress"
    {% endmacro %}
    {{ source }} = ipaddress.ip_address({{ arguments[0] }}).version == 4
"""

import re
from typing import Dict, List, Mapping, Optional, Sequence

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from .errors import GenerationError
from .rules import ToolFunction, ValidationValue, ValueType
from .schema import FieldDescriptorProto, SchemaFile, import_statement
from .writer import CodeWriter, float_literal


# =============================================================================
# IMPORT ACCUMULATION
# =============================================================================

class ImportSet:
    """
    Import statements demanded while generating one file.

    One instance lives for exactly one generation run and is handed down the
    compilation call chain; statements are deduplicated and emitted sorted.
    """

    def __init__(self):
        self._statements = set()

    def add_module(self, module: str, alias: Optional[str] = None) -> None:
        self._statements.add(import_statement(module, alias))

    def __iter__(self):
        # plain "import x" lines first, then "from x import y" lines
        return iter(sorted(self._statements, key=lambda s: (s.startswith('from '), s)))


# =============================================================================
# FUNCTION INTERFACE AND BUILT-INS
# =============================================================================

class Function:
    """Capability interface shared by built-in and configured functions."""

    name = ''

    def render(self, source: str, schema: SchemaFile, function: ToolFunction,
               arguments: Sequence[str]) -> str:
        raise NotImplementedError

    def render_in(self, source: str, scope, function: ToolFunction,
                  arguments: Sequence[str]) -> str:
        """Render with the full validation context; most functions only need the schema."""
        return self.render(source, scope.schema, function, arguments)

    def imports(self, schema: SchemaFile) -> List[str]:
        return []


class LenFunction(Function):
    name = 'len'

    def render_in(self, source, scope, function, arguments):
        if len(function.arguments) != 1 or \
                function.arguments[0].value_type is not ValueType.FIELD_REFERENCE:
            raise GenerationError('len expects exactly one field reference argument')
        fd = scope.reference_field(function.arguments[0])
        # strings count UTF-8 bytes, like min_size and max_size
        if fd.type == FieldDescriptorProto.TYPE_STRING and fd.label != FieldDescriptorProto.LABEL_REPEATED:
            return "%s = len(%s.encode('utf-8'))" % (source, arguments[0])
        return '%s = len(%s)' % (source, arguments[0])


# Go style verbs that have no direct %-format equivalent
_VERB_RE = re.compile(r'%([-+# 0]*\d*(?:\.\d+)?)([a-zA-Z%])')
_VERB_MAP = {'v': 's', 't': 's', 'q': 'r'}


def translate_format(fmt: str) -> str:
    """
    Translate a Go style format string into a %-format string.

        >>> translate_format('id=%v name=%q %d%%')
        'id=%s name=%r %d%%'
    """
    def replace(match):
        flags, verb = match.groups()
        return '%' + flags + _VERB_MAP.get(verb, verb)
    return _VERB_RE.sub(replace, fmt)


class SprintfFunction(Function):
    name = 'sprintf'

    def render(self, source, schema, function, arguments):
        if not function.arguments or function.arguments[0].value_type is not ValueType.BINARY:
            raise GenerationError('sprintf expects a literal format string as first argument')
        fmt = translate_format(function.arguments[0].value)
        values = list(arguments[1:])
        if len(values) == 1:
            return '%s = %r %% (%s,)' % (source, fmt, values[0])
        return '%s = %r %% (%s)' % (source, fmt, ', '.join(values))


class BinaryOperatorFunction(Function):
    """``equal``, ``mod`` and ``add``: one infix operator over two operands."""

    def __init__(self, name: str, operator: str):
        self.name = name
        self.operator = operator

    def render(self, source, schema, function, arguments):
        if len(arguments) != 2:
            raise GenerationError('binary function %s needs exactly 2 arguments, got %d'
                                  % (self.name, len(arguments)))
        return '%s = %s %s %s' % (source, arguments[0], self.operator, arguments[1])


class NowUnixNanoFunction(Function):
    name = 'now_unix_nano'

    def render(self, source, schema, function, arguments):
        if arguments:
            raise GenerationError('now_unix_nano takes no arguments')
        return '%s = time.time_ns()' % source

    def imports(self, schema):
        return ['time']


BUILTINS: Dict[str, Function] = {
    f.name: f for f in [
        LenFunction(),
        SprintfFunction(),
        BinaryOperatorFunction('equal', '=='),
        BinaryOperatorFunction('mod', '%'),
        BinaryOperatorFunction('add', '+'),
        NowUnixNanoFunction(),
    ]
}


# =============================================================================
# TEMPLATE FUNCTIONS
# =============================================================================

def _environment(undefined) -> SandboxedEnvironment:
    return SandboxedEnvironment(trim_blocks=True, lstrip_blocks=True, undefined=undefined)


_BRACKETS = {'"': '"', "'": "'", '<': '>'}


def parse_import_paths(name: str, text: str) -> List[str]:
    """Split the output of an ``Import`` macro into module paths."""
    paths = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if len(line) < 3 or _BRACKETS.get(line[0]) != line[-1]:
            raise GenerationError('malformed Import template of function %s: %r' % (name, line))
        paths.append(line[1:-1].strip())
    return paths


class TemplateFunction(Function):
    """
    A user function backed by a Jinja2 template.

    The template body renders the code; it sees ``source`` (the temporary to
    bind), ``schema`` (the owning SchemaFile), ``function`` (the raw
    ToolFunction) and ``arguments`` (operand expressions, already rendered).
    Undefined names are errors, so a template typo fails generation instead
    of producing broken code.
    """

    def __init__(self, name: str, text: str):
        self.name = name
        try:
            self._template = _environment(jinja2.StrictUndefined).from_string(text)
            # the Import macro is evaluated without call-site context
            self._import_template = _environment(jinja2.ChainableUndefined).from_string(text)
        except jinja2.TemplateSyntaxError as e:
            raise GenerationError('malformed template of function %s: %s' % (name, e)) from e

    def render(self, source, schema, function, arguments):
        try:
            return self._template.render(source=source, schema=schema,
                                         function=function, arguments=list(arguments))
        except jinja2.TemplateError as e:
            raise GenerationError("execute function %s's template failed: %s" % (self.name, e)) from e

    def imports(self, schema):
        try:
            module = self._import_template.make_module({'schema': schema})
            macro = getattr(module, 'Import', None)
            if macro is None:
                return []
            text = str(macro())
        except jinja2.TemplateError as e:
            raise GenerationError("execute Import template of function %s failed: %s"
                                  % (self.name, e)) from e
        return parse_import_paths(self.name, text)


class FunctionRegistry:
    """Lookup of externally configured functions by name."""

    def __init__(self, functions: Optional[Mapping[str, Function]] = None):
        self._functions: Dict[str, Function] = dict(functions or {})

    @classmethod
    def from_templates(cls, templates: Mapping[str, str]) -> 'FunctionRegistry':
        return cls({name: TemplateFunction(name, text) for name, text in templates.items()})

    def get(self, name: str) -> Optional[Function]:
        return self._functions.get(name)


# =============================================================================
# COMPILER
# =============================================================================

class FunctionCompiler:
    """
    Emits the statements computing function-valued operands.

    The ``scope`` passed to :meth:`compile` is the validation context of the
    field being compiled; it supplies ``ids`` (temporary name allocation),
    ``schema``, ``reference(value)`` (rendering of field references) and
    ``reference_field(value)`` (the descriptor a reference reads).
    """

    def __init__(self, writer: CodeWriter, registry: FunctionRegistry, imports: ImportSet):
        self.writer = writer
        self.registry = registry
        self.imports = imports

    def lookup(self, name: str) -> Function:
        impl = BUILTINS.get(name) or self.registry.get(name)
        if impl is None:
            raise GenerationError('unknown function: %s' % name)
        return impl

    def compile(self, source: str, scope, function: ToolFunction) -> None:
        impl = self.lookup(function.name)
        arguments = [self.render_value(scope, arg) for arg in function.arguments]
        self.writer.lines(impl.render_in(source, scope, function, arguments))
        for path in impl.imports(scope.schema):
            self.imports.add_module(path)

    def render_value(self, scope, value: ValidationValue) -> str:
        """Render one operand, compiling nested calls into fresh temporaries."""
        if value.value_type is ValueType.INT:
            return repr(value.value)
        if value.value_type is ValueType.DOUBLE:
            return float_literal(value.value)
        if value.value_type in (ValueType.BOOL, ValueType.BINARY):
            return repr(value.value)
        if value.value_type is ValueType.FIELD_REFERENCE:
            return scope.reference(value)
        if value.value_type is ValueType.FUNCTION:
            source = scope.ids.allocate('_src')
            self.compile(source, scope, value.value)
            return source
        raise GenerationError('value type %s is not supported as function argument'
                              % value.value_type.value)
