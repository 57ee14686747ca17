"""
Schema index and field views.

The descriptor provider hands over ``FileDescriptorProto`` objects for the
files being generated and everything they import. :class:`SchemaIndex` is
built from them once per run and answers every lookup the generator needs:
messages and enums by fully-qualified name, enum constants by the dotted
spelling used in rules, and the map entry types behind map fields.

:class:`FieldView` is the generator's view of one field occurrence. Real
fields are built from their descriptor; list elements, map keys and map
values are *derived* views that look like ordinary singular fields of the
element/key/value kind, so one recursive compiler serves every nesting level.
"""

import keyword
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from google.protobuf import descriptor_pb2

from .errors import GenerationError

FieldDescriptorProto = descriptor_pb2.FieldDescriptorProto

# =============================================================================
# FIELD KINDS
# =============================================================================

KIND_NAMES = {
    FieldDescriptorProto.TYPE_DOUBLE: 'double',
    FieldDescriptorProto.TYPE_FLOAT: 'float',
    FieldDescriptorProto.TYPE_INT64: 'int64',
    FieldDescriptorProto.TYPE_UINT64: 'uint64',
    FieldDescriptorProto.TYPE_INT32: 'int32',
    FieldDescriptorProto.TYPE_FIXED64: 'fixed64',
    FieldDescriptorProto.TYPE_FIXED32: 'fixed32',
    FieldDescriptorProto.TYPE_BOOL: 'bool',
    FieldDescriptorProto.TYPE_STRING: 'string',
    FieldDescriptorProto.TYPE_GROUP: 'group',
    FieldDescriptorProto.TYPE_MESSAGE: 'message',
    FieldDescriptorProto.TYPE_BYTES: 'bytes',
    FieldDescriptorProto.TYPE_UINT32: 'uint32',
    FieldDescriptorProto.TYPE_ENUM: 'enum',
    FieldDescriptorProto.TYPE_SFIXED32: 'sfixed32',
    FieldDescriptorProto.TYPE_SFIXED64: 'sfixed64',
    FieldDescriptorProto.TYPE_SINT32: 'sint32',
    FieldDescriptorProto.TYPE_SINT64: 'sint64',
}

INTEGER_KINDS = frozenset([
    FieldDescriptorProto.TYPE_INT32, FieldDescriptorProto.TYPE_SINT32,
    FieldDescriptorProto.TYPE_UINT32, FieldDescriptorProto.TYPE_INT64,
    FieldDescriptorProto.TYPE_SINT64, FieldDescriptorProto.TYPE_UINT64,
    FieldDescriptorProto.TYPE_SFIXED32, FieldDescriptorProto.TYPE_FIXED32,
    FieldDescriptorProto.TYPE_SFIXED64, FieldDescriptorProto.TYPE_FIXED64,
])
FLOAT_KINDS = frozenset([FieldDescriptorProto.TYPE_FLOAT, FieldDescriptorProto.TYPE_DOUBLE])
NUMERIC_KINDS = INTEGER_KINDS | FLOAT_KINDS
BINARY_KINDS = frozenset([FieldDescriptorProto.TYPE_STRING, FieldDescriptorProto.TYPE_BYTES])

# Python expression used to cast a value to the field's own representation
NUMERIC_CASTS = dict(
    [(kind, 'int') for kind in INTEGER_KINDS] +
    [(FieldDescriptorProto.TYPE_DOUBLE, 'float'), (FieldDescriptorProto.TYPE_FLOAT, 'float32')]
)

SINGULAR = 'singular'
LIST = 'list'
MAP = 'map'

ELEMENT = 'element'
KEY = 'key'
VALUE = 'value'


# =============================================================================
# NAMING HELPERS
# =============================================================================

def field_accessor(var: str, name: str) -> str:
    """
    Render a read of (possibly dotted) field ``name`` from variable ``var``.

    Python keywords cannot be used as attribute names, so those fields are
    read with getattr() as the protobuf runtime requires.

        >>> field_accessor('m', 'age')
        'm.age'
        >>> field_accessor('m', 'from')
        "getattr(m, 'from')"
    """
    expr = var
    for part in name.split('.'):
        if keyword.iskeyword(part):
            expr = 'getattr(%s, %r)' % (expr, part)
        else:
            expr = '%s.%s' % (expr, part)
    return expr


def module_path(proto_name: str, suffix: str) -> str:
    """``foo/bar-baz.proto`` -> ``foo.bar_baz<suffix>``, protoc's Python naming."""
    base = proto_name[:-len('.proto')] if proto_name.endswith('.proto') else proto_name
    return base.replace('-', '_').replace('/', '.') + suffix


def module_alias(module: str) -> str:
    """Alias under which a generated module imports another one."""
    return module.replace('_', '__').replace('.', '_dot_')


def import_statement(module: str, alias: Optional[str] = None) -> str:
    package, _, name = module.rpartition('.')
    if alias is None:
        return 'import %s' % module
    if package:
        return 'from %s import %s as %s' % (package, name, alias)
    return 'import %s as %s' % (name, alias)


# =============================================================================
# INDEX ENTRIES
# =============================================================================

class SchemaFile:
    """One schema file and the Python module names derived from it."""

    def __init__(self, proto: descriptor_pb2.FileDescriptorProto):
        self.proto = proto
        self.name = proto.name
        self.package = proto.package
        self.messages_module = module_path(proto.name, '_pb2')
        self.validate_module = module_path(proto.name, '_validate')

    @property
    def messages_alias(self) -> str:
        return module_alias(self.messages_module)

    @property
    def validate_alias(self) -> str:
        return module_alias(self.validate_module)

    @property
    def output_filename(self) -> str:
        return self.validate_module.replace('.', '/') + '.py'

    def __repr__(self):
        return 'SchemaFile(%r)' % self.name


@dataclass(frozen=True)
class MessageInfo:
    """A message type together with its position in its file."""
    full_name: str
    path: Tuple[str, ...]
    descriptor: descriptor_pb2.DescriptorProto
    schema: SchemaFile

    @property
    def name(self) -> str:
        return '.'.join(self.path)

    @property
    def is_map_entry(self) -> bool:
        return self.descriptor.options.map_entry

    @property
    def function_name(self) -> str:
        return 'validate_' + '_'.join(self.path)

    def field(self, name: str) -> Optional[FieldDescriptorProto]:
        for f in self.descriptor.field:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class EnumInfo:
    """An enum type together with its position in its file."""
    full_name: str
    path: Tuple[str, ...]
    descriptor: descriptor_pb2.EnumDescriptorProto
    schema: SchemaFile

    @property
    def numbers(self) -> Tuple[int, ...]:
        """Declared numbers in declaration order, aliases collapsed."""
        seen = []
        for value in self.descriptor.value:
            if value.number not in seen:
                seen.append(value.number)
        return tuple(seen)

    def value(self, name: str) -> Optional[descriptor_pb2.EnumValueDescriptorProto]:
        for value in self.descriptor.value:
            if value.name == name:
                return value
        return None


@dataclass(frozen=True)
class EnumConstant:
    """A resolved ``Enum.VALUE`` reference."""
    enum: EnumInfo
    name: str
    number: int

    @property
    def symbol(self) -> str:
        """
        Python expression naming the constant in its ``_pb2`` module.

        Values of top-level enums are module attributes; values of nested
        enums are attributes of the enclosing message class.
        """
        scope = [self.enum.schema.messages_alias] + list(self.enum.path[:-1])
        return '.'.join(scope + [self.name])


# =============================================================================
# SCHEMA INDEX
# =============================================================================

class SchemaIndex:
    """
    Name-indexed view over every file of one generation run.

    Built once before generation starts and read-only afterwards.

    Attributes:
        files: file name -> SchemaFile, in the order given
        messages: fully-qualified name -> MessageInfo (map entries included)
        enums: fully-qualified name -> EnumInfo
        generated: names of the files that get a validate module in this run
    """

    def __init__(self, files: Iterable[descriptor_pb2.FileDescriptorProto],
                 generate: Optional[Iterable[str]] = None):
        self.files: Dict[str, SchemaFile] = {}
        self.messages: Dict[str, MessageInfo] = {}
        self.enums: Dict[str, EnumInfo] = {}
        self._package_enums: Dict[str, Dict[str, EnumInfo]] = {}

        for proto in files:
            schema = SchemaFile(proto)
            self.files[schema.name] = schema
            prefix = schema.package + '.' if schema.package else ''
            for enum in proto.enum_type:
                info = self._add_enum(schema, prefix, (), enum)
                self._package_enums.setdefault(schema.package, {})[enum.name] = info
            for message in proto.message_type:
                self._add_message(schema, prefix, (), message)

        if generate is None:
            self.generated = frozenset(name for name, schema in self.files.items()
                                       if not schema.package.startswith('google.protobuf'))
        else:
            self.generated = frozenset(generate)

    def _add_enum(self, schema, prefix, parents, enum) -> EnumInfo:
        path = parents + (enum.name,)
        info = EnumInfo(prefix + '.'.join(path), path, enum, schema)
        self.enums[info.full_name] = info
        return info

    def _add_message(self, schema, prefix, parents, message) -> None:
        path = parents + (message.name,)
        info = MessageInfo(prefix + '.'.join(path), path, message, schema)
        self.messages[info.full_name] = info
        for enum in message.enum_type:
            self._add_enum(schema, prefix, path, enum)
        for nested in message.nested_type:
            self._add_message(schema, prefix, path, nested)

    # -------------------------------------------------------------------------

    def file(self, name: str) -> SchemaFile:
        try:
            return self.files[name]
        except KeyError:
            raise GenerationError('schema file %r is not part of this run' % name) from None

    def message(self, type_name: str) -> MessageInfo:
        try:
            return self.messages[type_name.lstrip('.')]
        except KeyError:
            raise GenerationError('can not find message %s in any file' % type_name.lstrip('.')) from None

    def enum(self, type_name: str) -> EnumInfo:
        try:
            return self.enums[type_name.lstrip('.')]
        except KeyError:
            raise GenerationError('can not find enum %s in any file' % type_name.lstrip('.')) from None

    def messages_of(self, schema: SchemaFile) -> List[MessageInfo]:
        """Messages of one file in declaration order, parents before nested types."""
        return [info for info in self.messages.values()
                if info.schema is schema and not info.is_map_entry]

    def is_generated(self, schema: SchemaFile) -> bool:
        return schema.name in self.generated

    def resolve_enum_constant(self, identifier: str, package: str) -> EnumConstant:
        """
        Resolve ``Enum.VALUE`` in ``package`` or ``pkg.Enum.VALUE`` in ``pkg``.

        Only top-level enums take part, names being unique within a package.
        """
        segments = identifier.split('.')
        if len(segments) == 2:
            enum_name, value_name = segments
        elif len(segments) >= 3 and all(segments):
            package = '.'.join(segments[:-2])
            enum_name, value_name = segments[-2:]
        else:
            raise GenerationError('wrong format for enum rule: %s' % identifier)

        enum = self._package_enums.get(package, {}).get(enum_name)
        value = enum.value(value_name) if enum is not None else None
        if value is None:
            raise GenerationError("can not find enum value '%s.%s' in package '%s'"
                                  % (enum_name, value_name, package))
        return EnumConstant(enum, value.name, value.number)


# =============================================================================
# FIELD VIEWS
# =============================================================================

@dataclass(frozen=True)
class FieldView:
    """
    One field occurrence as seen by the generator.

    Attributes:
        name: Field name; derived views keep the owning field's name.
        kind: FieldDescriptorProto.Type of the value (for lists: of the element).
        cardinality: SINGULAR, LIST or MAP.
        type_name: Fully-qualified enum/message name (for maps: the entry type).
        synthetic: True for derived element/key/value views.
    """
    name: str
    kind: int
    cardinality: str = SINGULAR
    type_name: str = ''
    synthetic: bool = False

    @classmethod
    def from_descriptor(cls, field: FieldDescriptorProto, index: SchemaIndex) -> 'FieldView':
        cardinality = SINGULAR
        if field.label == FieldDescriptorProto.LABEL_REPEATED:
            cardinality = LIST
            if (field.type == FieldDescriptorProto.TYPE_MESSAGE
                    and index.message(field.type_name).is_map_entry):
                cardinality = MAP
        return cls(field.name, field.type, cardinality, field.type_name.lstrip('.'))

    def derive(self, selector: str, index: SchemaIndex) -> 'FieldView':
        """
        Build the synthetic singular view of a list element, map key or map value.

        Map key/value kinds and type references come from the map entry
        message, so enum and message values resolve to their own schema.
        """
        if selector == ELEMENT:
            if self.cardinality != LIST:
                raise GenerationError('field %s is not a list' % self.name)
            return FieldView(self.name, self.kind, SINGULAR, self.type_name, synthetic=True)
        if selector in (KEY, VALUE):
            if self.cardinality != MAP:
                raise GenerationError('field %s is not a map' % self.name)
            entry = index.message(self.type_name)
            part = entry.field(selector)
            if part is None:
                raise GenerationError('map entry %s has no %s field' % (entry.full_name, selector))
            return FieldView(self.name, part.type, SINGULAR, part.type_name.lstrip('.'), synthetic=True)
        raise ValueError('unknown selector %r' % selector)

    @property
    def kind_name(self) -> str:
        return KIND_NAMES.get(self.kind, 'unknown')

    @property
    def is_list(self) -> bool:
        return self.cardinality == LIST

    @property
    def is_map(self) -> bool:
        return self.cardinality == MAP

    @property
    def is_message(self) -> bool:
        return self.cardinality == SINGULAR and self.kind == FieldDescriptorProto.TYPE_MESSAGE

    @property
    def is_string(self) -> bool:
        return self.kind == FieldDescriptorProto.TYPE_STRING

    @property
    def numeric_cast(self) -> Optional[str]:
        return NUMERIC_CASTS.get(self.kind)
