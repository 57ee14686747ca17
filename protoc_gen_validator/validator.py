#!/usr/bin/env python3
# kate: replace-tabs on; indent-width 4;

"""
Validation code generator
=========================

Compiles the declarative rules attached to protobuf message fields into a
Python module of validate functions, one per message, that run against the
``*_pb2`` message classes without any runtime reflection.

Architecture Overview
---------------------
1. **ValidateContext**: working unit for one field occurrence: the accessor
   expression, the field view, the rules to enforce and the per-message
   identifier allocator. List elements, map keys and map values get
   synthetic child contexts, so one recursive entry point handles every
   nesting level.

2. **ValidatorGenerator**: walks the messages of one schema file and emits
   code for each rule, dispatching on the field kind:

   - bool / numeric / string and bytes (scalar validators)
   - enum (constant resolution across packages, defined-only tables)
   - list / map / nested message (composite validators)
   - message-level ``assert`` rules

3. **Assembly**: header, imports (base modules plus whatever referenced
   enums, nested validators and function templates demanded), the
   unused-import guard, and the validate functions in declaration order.

Rule Handling
-------------
Each rule is compiled in two steps: materialize the *source* operand (a
literal, a read of another field, or a computed temporary), then emit the
predicate against the *target*. Rules run in declaration order and the
first failing one raises, except ``not_nil`` which is always checked first.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from . import __version__
from .errors import GenerationError
from .functions import FunctionCompiler, FunctionRegistry, ImportSet
from .rules import IdAllocator, Rule, RuleKey, RuleSet, ValidationValue, ValueType
from .runtime import EMBEDDED, float32
from .schema import (BINARY_KINDS, ELEMENT, KEY, NUMERIC_KINDS, VALUE, FieldDescriptorProto,
                     FieldView, MessageInfo, SchemaFile, SchemaIndex, field_accessor)
from .writer import CodeWriter, bytes_literal, float_literal

MESSAGE_VAR = 'm'

RUNTIME_IMPORT = 'from protoc_gen_validator.runtime import ValidationError, as_bytes, float32'
BASE_MODULES = ('re', 'time')

# Failure condition of each comparison rule: "target <op> source" means invalid
_COMPARISONS = {
    RuleKey.CONST: '!=',
    RuleKey.LT: '>=',
    RuleKey.LE: '>',
    RuleKey.GT: '<=',
    RuleKey.GE: '<',
}

_BINARY_OPERAND_RULES = (RuleKey.CONST, RuleKey.PREFIX, RuleKey.SUFFIX,
                         RuleKey.CONTAINS, RuleKey.NOT_CONTAINS, RuleKey.PATTERN)
_SIZE_RULES = (RuleKey.MIN_SIZE, RuleKey.MAX_SIZE)
_MEMBERSHIP_RULES = (RuleKey.IN, RuleKey.NOT_IN)


@contextmanager
def _rule_scope(rule: Rule) -> Iterator[None]:
    try:
        yield
    except GenerationError as e:
        raise e.locate(rule=rule.key.value)


def _literal_label(label: str, suffix: str, index: str) -> str:
    """Label expression of an element/entry: ``'tags' + '[%d]' % _idx1``."""
    return '%s + %r %% (%s,)' % (label, suffix, index)


def _flag_enabled(rule: Rule) -> bool:
    """Check a flag rule (``not_nil``, ``skip``, ...) carries a bool and return it."""
    if rule.specified is None or rule.specified.value_type is not ValueType.BOOL:
        raise GenerationError('%s expects a bool value' % rule.key.value)
    return rule.enabled


# =============================================================================
# VALIDATION CONTEXT
# =============================================================================

@dataclass
class ValidateContext:
    """
    Compiler state for one field occurrence.

    Attributes:
        field: View of the field; synthetic for elements, keys and values.
               None for the message-level context.
        target: Python expression reading the current value.
        label: Python expression naming the value in runtime errors.
        rules: Rules to enforce, in declaration order.
        schema: Schema file being generated.
        message: Enclosing message; field references resolve against it.
        ids: Temporary name allocator shared by the whole message.
        index: Name index of the run, for resolving dotted field references.
    """
    field: Optional[FieldView]
    target: str
    label: str
    rules: Tuple[Rule, ...]
    schema: SchemaFile
    message: MessageInfo
    ids: IdAllocator
    index: SchemaIndex

    def child(self, selector: str, index: SchemaIndex, target: str, label: str,
              rules: Tuple[Rule, ...]) -> 'ValidateContext':
        """Context of a list element, map key or map value, carrying the inner rules."""
        return ValidateContext(self.field.derive(selector, index), target, label, rules,
                               self.schema, self.message, self.ids, index)

    def reference(self, value: ValidationValue) -> str:
        """Render a field reference, checking it names a field of the message."""
        head = value.value.split('.')[0]
        if self.message.field(head) is None:
            raise GenerationError('field reference %s does not name a field of %s'
                                  % (value.value, self.message.full_name))
        return value.field_reference_name(MESSAGE_VAR + '.')

    def reference_field(self, value: ValidationValue) -> FieldDescriptorProto:
        """Descriptor of the field a reference reads, following dotted paths."""
        head, *rest = value.value.split('.')
        fd = self.message.field(head)
        for part in rest:
            if fd is None or fd.type != FieldDescriptorProto.TYPE_MESSAGE:
                fd = None
                break
            fd = self.index.message(fd.type_name).field(part)
        if fd is None:
            raise GenerationError('field reference %s does not name a field of %s'
                                  % (value.value, self.message.full_name))
        return fd


# =============================================================================
# GENERATOR
# =============================================================================

class ValidatorGenerator:
    """
    Generates the validate module of one schema file.

    Attributes:
        schema: The file being generated
        index: Name index over every file of the run (read-only)
        rules: Fully-qualified message name -> RuleSet
        registry: Externally configured functions
    """

    def __init__(self, schema: SchemaFile, index: SchemaIndex,
                 rules: Optional[Mapping[str, RuleSet]] = None,
                 registry: Optional[FunctionRegistry] = None):
        self.schema = schema
        self.index = index
        self.rules = rules or {}
        self.registry = registry or FunctionRegistry()
        self.writer = CodeWriter()
        self.imports = ImportSet()
        self.functions = FunctionCompiler(self.writer, self.registry, self.imports)

    @property
    def output_filename(self) -> str:
        return self.schema.output_filename

    def generate(self) -> str:
        """
        Return the complete module source.

        Raises GenerationError, located at file/message/field/rule, on the
        first rule that cannot be compiled; nothing is returned in that case.
        """
        self.writer = CodeWriter()
        self.imports = ImportSet()
        self.functions = FunctionCompiler(self.writer, self.registry, self.imports)
        messages = self.index.messages_of(self.schema)
        try:
            for info in messages:
                self._generate_message(info)
        except GenerationError as e:
            raise e.locate(schema=self.schema.name)
        return self._assemble(messages)

    # =========================================================================
    # Assembly
    # =========================================================================

    def _assemble(self, messages: List[MessageInfo]) -> str:
        out = CodeWriter()
        out.line('# Code generated by protoc-gen-validator. DO NOT EDIT.')
        out.line('# versions:')
        out.line('#     protoc-gen-validator %s' % __version__)
        out.line('# source: %s' % self.schema.name)
        out.line('"""Validate functions for messages of package %r."""'
                 % self.schema.package)
        out.line()

        for module in BASE_MODULES:
            self.imports.add_module(module)
        plain = [s for s in self.imports if not s.startswith('from ')]
        qualified = [s for s in self.imports if s.startswith('from ')]
        for statement in plain:
            out.line(statement)
        out.line()
        out.line(RUNTIME_IMPORT)
        for statement in qualified:
            out.line(statement)
        out.line()
        out.line('PROTO_PACKAGE = %r' % self.schema.package)
        out.line()
        if messages:
            with out.block('__all__ = ['):
                for info in messages:
                    out.line('%r,' % info.function_name)
            out.line(']')
        else:
            out.line('__all__ = []')
        out.line()
        out.comment('unused protection')
        out.line('_ = (re.search, time.time_ns, ValidationError, as_bytes, float32)')
        out.extend(self.writer)
        return out.getvalue()

    # =========================================================================
    # Messages
    # =========================================================================

    def _generate_message(self, info: MessageInfo) -> None:
        ruleset = self.rules.get(info.full_name, RuleSet())
        ids = IdAllocator()
        w = self.writer
        try:
            for name in ruleset.fields:
                if info.field(name) is None:
                    raise GenerationError('rules given for unknown field %s' % name)

            w.line()
            w.line()
            with w.block('def %s(%s):' % (info.function_name, MESSAGE_VAR)):
                w.line('"""Validate a %s message; raises ValidationError on the first violation."""'
                       % info.full_name)
                if ruleset.message:
                    vc = ValidateContext(None, MESSAGE_VAR, repr(info.name), tuple(ruleset.message),
                                         self.schema, info, ids, self.index)
                    self._generate_struct_like_validation(vc)
                for fd in info.descriptor.field:
                    self._generate_message_field(info, fd, tuple(ruleset.fields.get(fd.name, ())), ids)
                w.line('return None')
        except GenerationError as e:
            raise e.locate(message=info.full_name)

    def _generate_message_field(self, info: MessageInfo, fd: FieldDescriptorProto,
                                rules: Tuple[Rule, ...], ids: IdAllocator) -> None:
        try:
            view = FieldView.from_descriptor(fd, self.index)
            # singular messages are always visited, other fields only when constrained
            if not rules and not view.is_message:
                return
            vc = ValidateContext(view, field_accessor(MESSAGE_VAR, fd.name), repr(fd.name),
                                 rules, self.schema, info, ids, self.index)
            self._generate_field_validation(vc, False)
        except GenerationError as e:
            raise e.locate(field=fd.name)

    def _generate_struct_like_validation(self, vc: ValidateContext) -> None:
        """Message-level rules; only ``assert`` is meaningful here."""
        for rule in vc.rules:
            with _rule_scope(rule):
                if rule.key is not RuleKey.ASSERT:
                    raise GenerationError('unknown message annotation')
                value = rule.specified
                if value is None or value.value_type is not ValueType.FUNCTION:
                    raise GenerationError('assert expects a function value')
                source = vc.ids.allocate('_assert')
                self.functions.compile(source, vc, value.value)
                with self.writer.block('if not (%s):' % source):
                    self.writer.line('raise ValidationError(%s, %r, None)' % (vc.label, RuleKey.ASSERT.value))

    # =========================================================================
    # Field dispatch
    # =========================================================================

    def _generate_field_validation(self, vc: ValidateContext, is_inner: bool) -> None:
        """
        Entry point for every field occurrence, real or synthetic.

        ``is_inner`` is set for element/key/value contexts, which are already
        unwrapped from their list or map.
        """
        for rule in vc.rules:
            if rule.key is RuleKey.NOT_NIL:
                with _rule_scope(rule):
                    self._generate_not_nil(vc, rule)

        field = vc.field
        if field.is_list and not is_inner:
            self._generate_list_validation(vc)
        elif field.is_map and not is_inner:
            self._generate_map_validation(vc)
        elif field.kind == FieldDescriptorProto.TYPE_MESSAGE:
            self._generate_message_field_validation(vc)
        elif field.kind == FieldDescriptorProto.TYPE_ENUM:
            self._generate_enum_validation(vc)
        elif field.kind == FieldDescriptorProto.TYPE_BOOL:
            self._generate_bool_validation(vc)
        elif field.kind in NUMERIC_KINDS:
            self._generate_numeric_validation(vc)
        elif field.kind in BINARY_KINDS:
            self._generate_binary_validation(vc)
        else:
            raise GenerationError('unsupported field kind %s' % field.kind_name)

    def _generate_not_nil(self, vc: ValidateContext, rule: Rule) -> None:
        # only message values can be unset
        if not _flag_enabled(rule) or not vc.field.is_message:
            return
        if vc.field.synthetic:
            condition = '%s is None' % vc.target
        else:
            condition = 'not %s.HasField(%r)' % (MESSAGE_VAR, vc.field.name)
        with self.writer.block('if %s:' % condition):
            self._fail(vc, RuleKey.NOT_NIL, 'None')

    def _fail(self, vc: ValidateContext, key: RuleKey, value: str) -> None:
        self.writer.line('raise ValidationError(%s, %r, %s)' % (vc.label, key.value, value))

    # =========================================================================
    # Operand materialization
    # =========================================================================

    def _computed(self, vc: ValidateContext, value: ValidationValue) -> str:
        source = vc.ids.allocate('_src')
        self.functions.compile(source, vc, value.value)
        return source

    def _numeric_literal(self, value, cast: str) -> str:
        if cast == 'int':
            if isinstance(value, float) and value != value:
                raise GenerationError('NaN can not be used as an integer bound')
            try:
                return repr(int(value))
            except OverflowError:
                raise GenerationError('%r can not be used as an integer bound' % value) from None
        if cast == 'float32':
            try:
                return float_literal(float32(value))
            except OverflowError:
                raise GenerationError('%r is out of range for a float field' % value) from None
        return float_literal(value)

    def _numeric_source(self, vc: ValidateContext, rule: Rule, cast: str) -> str:
        value = rule.specified
        if value is None:
            raise GenerationError('%s needs a value' % rule.key.value)
        if value.value_type in (ValueType.INT, ValueType.DOUBLE):
            return self._numeric_literal(value.value, cast)
        if value.value_type is ValueType.FIELD_REFERENCE:
            return '%s(%s)' % (cast, vc.reference(value))
        if value.value_type is ValueType.FUNCTION:
            return '%s(%s)' % (cast, self._computed(vc, value))
        raise GenerationError('unsupported value type %s for %s in numeric validation'
                              % (value.value_type.value, rule.key.value))

    def _size_source(self, vc: ValidateContext, rule: Rule) -> str:
        value = rule.specified
        if value is None:
            raise GenerationError('%s needs a value' % rule.key.value)
        if value.value_type is ValueType.INT:
            return repr(value.value)
        if value.value_type is ValueType.FIELD_REFERENCE:
            return 'int(%s)' % vc.reference(value)
        if value.value_type is ValueType.FUNCTION:
            return 'int(%s)' % self._computed(vc, value)
        raise GenerationError('unsupported value type %s for %s'
                              % (value.value_type.value, rule.key.value))

    def _generate_sequence(self, name: str, vc: ValidateContext, values: Tuple[ValidationValue, ...]) -> None:
        """Bind ``name`` to a literal tuple of same-typed values for in/not_in."""
        items = [self._sequence_item(vc, value) for value in values]
        if len(items) == 1:
            self.writer.line('%s = (%s,)' % (name, items[0]))
        else:
            self.writer.line('%s = (%s)' % (name, ', '.join(items)))

    def _sequence_item(self, vc: ValidateContext, value: ValidationValue) -> str:
        field = vc.field
        cast = field.numeric_cast
        if value.value_type is ValueType.FIELD_REFERENCE:
            source = vc.reference(value)
            return '%s(%s)' % (cast, source) if cast else source
        if value.value_type is ValueType.FUNCTION:
            source = self._computed(vc, value)
            return '%s(%s)' % (cast, source) if cast else source
        if cast and value.value_type in (ValueType.INT, ValueType.DOUBLE):
            return self._numeric_literal(value.value, cast)
        if field.kind in BINARY_KINDS and value.value_type is ValueType.BINARY:
            return repr(value.value) if field.is_string else bytes_literal(value.value)
        raise GenerationError('value type %s not supported in sequence of %s'
                              % (value.value_type.value, field.kind_name))

    def _generate_membership(self, vc: ValidateContext, rule: Rule) -> None:
        source = vc.ids.allocate('_src')
        self._generate_sequence(source, vc, rule.range)
        operator = 'not in' if rule.key is RuleKey.IN else 'in'
        with self.writer.block('if %s %s %s:' % (vc.target, operator, source)):
            self._fail(vc, rule.key, vc.target)

    # =========================================================================
    # Scalar validators
    # =========================================================================

    def _generate_bool_validation(self, vc: ValidateContext) -> None:
        for rule in vc.rules:
            with _rule_scope(rule):
                if rule.key is RuleKey.NOT_NIL:
                    continue
                if rule.key is not RuleKey.CONST:
                    raise GenerationError('unknown bool annotation')
                value = rule.specified
                if value is not None and value.value_type is ValueType.BOOL:
                    source = repr(value.value)
                elif value is not None and value.value_type is ValueType.FIELD_REFERENCE:
                    source = vc.reference(value)
                else:
                    raise GenerationError('const of a bool field expects a bool or a field reference')
                with self.writer.block('if %s != %s:' % (vc.target, source)):
                    self._fail(vc, rule.key, vc.target)

    def _generate_numeric_validation(self, vc: ValidateContext) -> None:
        cast = vc.field.numeric_cast
        target = vc.target
        for rule in vc.rules:
            with _rule_scope(rule):
                if rule.key is RuleKey.NOT_NIL:
                    continue
                if rule.key in _COMPARISONS:
                    source = self._numeric_source(vc, rule, cast)
                    with self.writer.block('if %s %s %s:' % (target, _COMPARISONS[rule.key], source)):
                        self._fail(vc, rule.key, target)
                elif rule.key in _MEMBERSHIP_RULES:
                    self._generate_membership(vc, rule)
                else:
                    raise GenerationError('unknown numeric annotation')

    def _binary_source(self, vc: ValidateContext, rule: Rule) -> str:
        value = rule.specified
        if value is None:
            raise GenerationError('%s needs a value' % rule.key.value)
        if value.value_type is ValueType.FIELD_REFERENCE:
            return vc.reference(value)
        if value.value_type is ValueType.FUNCTION:
            return self._computed(vc, value)
        if value.value_type is ValueType.BINARY:
            source = vc.ids.allocate('_src')
            # patterns stay text literals; bytes targets coerce them at match time
            if vc.field.is_string or rule.key is RuleKey.PATTERN:
                self.writer.line('%s = %r' % (source, value.value))
            else:
                self.writer.line('%s = %s' % (source, bytes_literal(value.value)))
            return source
        raise GenerationError('unsupported value type %s for %s in binary validation'
                              % (value.value_type.value, rule.key.value))

    def _generate_binary_validation(self, vc: ValidateContext) -> None:
        target = vc.target
        is_string = vc.field.is_string
        if is_string:
            size = "len(%s.encode('utf-8'))" % target
        else:
            size = 'len(%s)' % target
        w = self.writer
        for rule in vc.rules:
            with _rule_scope(rule):
                key = rule.key
                if key is RuleKey.NOT_NIL:
                    continue
                if key in _MEMBERSHIP_RULES:
                    self._generate_membership(vc, rule)
                    continue
                if key in _SIZE_RULES:
                    source = self._size_source(vc, rule)
                    operator = '<' if key is RuleKey.MIN_SIZE else '>'
                    with w.block('if %s %s %s:' % (size, operator, source)):
                        self._fail(vc, key, size)
                    continue
                if key not in _BINARY_OPERAND_RULES:
                    raise GenerationError('unknown binary annotation')

                source = self._binary_source(vc, rule)
                if key is RuleKey.CONST:
                    condition = '%s != %s' % (target, source)
                elif key is RuleKey.PREFIX:
                    condition = 'not %s.startswith(%s)' % (target, source)
                elif key is RuleKey.SUFFIX:
                    condition = 'not %s.endswith(%s)' % (target, source)
                elif key is RuleKey.CONTAINS:
                    condition = '%s not in %s' % (source, target)
                elif key is RuleKey.NOT_CONTAINS:
                    condition = '%s in %s' % (source, target)
                elif is_string:
                    condition = 're.search(%s, %s) is None' % (source, target)
                else:
                    condition = 're.search(as_bytes(%s), %s) is None' % (source, target)
                with w.block('if %s:' % condition):
                    self._fail(vc, key, target)

    # =========================================================================
    # Enum validator
    # =========================================================================

    def _generate_enum_validation(self, vc: ValidateContext) -> None:
        target = vc.target
        w = self.writer
        for rule in vc.rules:
            with _rule_scope(rule):
                value = rule.specified
                if rule.key is RuleKey.NOT_NIL:
                    continue
                if rule.key is RuleKey.CONST:
                    if value is None or value.value_type is not ValueType.BINARY:
                        raise GenerationError('const of an enum field expects an enum value identifier')
                    constant = self.index.resolve_enum_constant(value.value, self.schema.package)
                    owner = constant.enum.schema
                    self.imports.add_module(owner.messages_module, owner.messages_alias)
                    source = vc.ids.allocate('_src')
                    w.line('%s = %s' % (source, constant.symbol))
                    with w.block('if %s != %s:' % (target, source)):
                        self._fail(vc, rule.key, target)
                elif rule.key is RuleKey.DEFINED_ONLY:
                    if not _flag_enabled(rule):
                        continue
                    numbers = self.index.enum(vc.field.type_name).numbers
                    source = vc.ids.allocate('_defined')
                    if len(numbers) == 1:
                        w.line('%s = (%d,)' % (source, numbers[0]))
                    else:
                        w.line('%s = (%s)' % (source, ', '.join(str(n) for n in numbers)))
                    with w.block('if %s not in %s:' % (target, source)):
                        self._fail(vc, rule.key, target)
                else:
                    raise GenerationError('unknown enum annotation')

    # =========================================================================
    # Composite validators
    # =========================================================================

    def _generate_message_field_validation(self, vc: ValidateContext) -> None:
        w = self.writer
        skip = False
        for rule in vc.rules:
            with _rule_scope(rule):
                if rule.key is RuleKey.NOT_NIL:
                    continue
                if rule.key is not RuleKey.SKIP:
                    raise GenerationError('unknown struct like annotation')
                if _flag_enabled(rule):
                    skip = True
        if skip:
            w.comment('skip field %s check' % vc.field.name)
            return

        info = self.index.message(vc.field.type_name)
        if not self.index.is_generated(info.schema):
            w.comment('%s has no validate function in this run, field %s not checked'
                      % (info.full_name, vc.field.name))
            return
        if info.schema is self.schema:
            function = info.function_name
        else:
            owner = info.schema
            self.imports.add_module(owner.validate_module, owner.validate_alias)
            function = '%s.%s' % (owner.validate_alias, info.function_name)

        if vc.field.synthetic:
            self._generate_nested_call(vc, function)
        else:
            with w.block('if %s.HasField(%r):' % (MESSAGE_VAR, vc.field.name)):
                self._generate_nested_call(vc, function)

    def _generate_nested_call(self, vc: ValidateContext, function: str) -> None:
        w = self.writer
        with w.block('try:'):
            w.line('%s(%s)' % (function, vc.target))
        with w.block('except ValidationError as err:'):
            w.line('raise ValidationError(%s, %r, %s) from err' % (vc.label, EMBEDDED, vc.target))

    def _generate_list_validation(self, vc: ValidateContext) -> None:
        w = self.writer
        target = vc.target
        for rule in vc.rules:
            with _rule_scope(rule):
                key = rule.key
                if key is RuleKey.NOT_NIL:
                    continue
                if key in _SIZE_RULES:
                    source = self._size_source(vc, rule)
                    operator = '<' if key is RuleKey.MIN_SIZE else '>'
                    with w.block('if len(%s) %s %s:' % (target, operator, source)):
                        self._fail(vc, key, 'len(%s)' % target)
                elif key is RuleKey.ELEMENT:
                    index = vc.ids.allocate('_idx')
                    elem = vc.ids.allocate('_elem')
                    with w.block('for %s, %s in enumerate(%s):' % (index, elem, target)):
                        child = vc.child(ELEMENT, self.index, elem,
                                         _literal_label(vc.label, '[%d]', index), rule.inner)
                        self._generate_field_validation(child, True)
                else:
                    raise GenerationError('unknown list annotation')

    def _generate_map_validation(self, vc: ValidateContext) -> None:
        w = self.writer
        target = vc.target
        for rule in vc.rules:
            with _rule_scope(rule):
                key = rule.key
                if key is RuleKey.NOT_NIL:
                    continue
                if key in _SIZE_RULES:
                    source = self._size_source(vc, rule)
                    operator = '<' if key is RuleKey.MIN_SIZE else '>'
                    with w.block('if len(%s) %s %s:' % (target, operator, source)):
                        self._fail(vc, key, 'len(%s)' % target)
                elif key is RuleKey.NO_SPARSE:
                    enabled = _flag_enabled(rule)
                    if vc.field.derive(VALUE, self.index).kind != FieldDescriptorProto.TYPE_MESSAGE:
                        raise GenerationError('no_sparse rule is only applicable for embedded message types')
                    if not enabled:
                        continue
                    map_key = vc.ids.allocate('_key')
                    map_value = vc.ids.allocate('_val')
                    with w.block('for %s, %s in %s.items():' % (map_key, map_value, target)):
                        w.comment('protobuf message maps never hold None, kept for map-like inputs')
                        with w.block('if %s is None:' % map_value):
                            w.line('raise ValidationError(%s, %r, None)'
                                   % (_literal_label(vc.label, '[%r]', map_key), key.value))
                elif key is RuleKey.MAP_KEY:
                    map_key = vc.ids.allocate('_key')
                    with w.block('for %s in %s:' % (map_key, target)):
                        child = vc.child(KEY, self.index, map_key,
                                         _literal_label(vc.label, '[%r]', map_key), rule.inner)
                        self._generate_field_validation(child, True)
                elif key is RuleKey.MAP_VALUE:
                    map_key = vc.ids.allocate('_key')
                    map_value = vc.ids.allocate('_val')
                    with w.block('for %s, %s in %s.items():' % (map_key, map_value, target)):
                        child = vc.child(VALUE, self.index, map_value,
                                         _literal_label(vc.label, '[%r]', map_key), rule.inner)
                        self._generate_field_validation(child, True)
                else:
                    raise GenerationError('unknown map annotation')


# =============================================================================
# ENTRY POINT
# =============================================================================

def generate_files(index: SchemaIndex, rules: Optional[Mapping[str, RuleSet]] = None,
                   registry: Optional[FunctionRegistry] = None,
                   files: Optional[List[str]] = None) -> Dict[str, str]:
    """
    Generate the validate module of every requested file.

    Returns output file name -> source. ``files`` defaults to the index's
    generated set, in index order. The first GenerationError aborts the run.
    """
    names = files if files is not None else [n for n in index.files if n in index.generated]
    result = {}
    for name in names:
        generator = ValidatorGenerator(index.file(name), index, rules, registry)
        result[generator.output_filename] = generator.generate()
    return result
