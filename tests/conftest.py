"""
Pytest configuration and shared fixtures for the validator tests.

Tests never shell out to protoc. Schemas are written directly as
``FileDescriptorProto`` objects and loaded into a private DescriptorPool;
pb2-shaped modules built from that pool are installed in ``sys.modules``
under protoc's module names, then the generated ``*_validate.py`` source is
executed so the validate functions run against real message instances.

Key concepts:
    - ``proto`` builds descriptor protos (files, messages, fields, enums, maps)
    - ``build_validators`` generates, installs and returns a ValidatorBuild
"""

import sys
import types
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pytest
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.internal import enum_type_wrapper

from protoc_gen_validator.functions import FunctionRegistry
from protoc_gen_validator.rules import parse_rule_document
from protoc_gen_validator.schema import SchemaIndex, module_path
from protoc_gen_validator.validator import generate_files

F = descriptor_pb2.FieldDescriptorProto


# =============================================================================
# Descriptor Builders
# =============================================================================

def map_entry_name(field_name: str) -> str:
    """Name protoc gives the entry type of a map field: ``my_map`` -> ``MyMapEntry``."""
    parts = field_name.split('_')
    return ''.join(p[:1].upper() + p[1:] for p in parts) + 'Entry'


class ProtoBuilder:
    """Shorthand constructors for descriptor protos."""

    KINDS = {
        'double': F.TYPE_DOUBLE,
        'float': F.TYPE_FLOAT,
        'int64': F.TYPE_INT64,
        'uint64': F.TYPE_UINT64,
        'int32': F.TYPE_INT32,
        'uint32': F.TYPE_UINT32,
        'sint32': F.TYPE_SINT32,
        'sint64': F.TYPE_SINT64,
        'fixed32': F.TYPE_FIXED32,
        'fixed64': F.TYPE_FIXED64,
        'sfixed32': F.TYPE_SFIXED32,
        'sfixed64': F.TYPE_SFIXED64,
        'bool': F.TYPE_BOOL,
        'string': F.TYPE_STRING,
        'bytes': F.TYPE_BYTES,
        'message': F.TYPE_MESSAGE,
        'enum': F.TYPE_ENUM,
    }

    def field(self, name: str, number: int, kind: str, repeated: bool = False,
              type_name: str = '') -> descriptor_pb2.FieldDescriptorProto:
        fd = F(name=name, number=number, type=self.KINDS[kind],
               label=F.LABEL_REPEATED if repeated else F.LABEL_OPTIONAL)
        if type_name:
            fd.type_name = type_name if type_name.startswith('.') else '.' + type_name
        return fd

    def message(self, name: str, *fields, nested: Iterable[Any] = (),
                enums: Iterable[Any] = ()) -> descriptor_pb2.DescriptorProto:
        msg = descriptor_pb2.DescriptorProto(name=name)
        msg.field.extend(fields)
        msg.nested_type.extend(nested)
        msg.enum_type.extend(enums)
        return msg

    def map_field(self, owner: descriptor_pb2.DescriptorProto, owner_full_name: str,
                  name: str, number: int, key: str, value: str, value_type: str = '') -> None:
        """Add map field ``name`` to ``owner`` together with its nested entry type."""
        entry = descriptor_pb2.DescriptorProto(name=map_entry_name(name))
        entry.options.map_entry = True
        entry.field.extend([self.field('key', 1, key), self.field('value', 2, value, type_name=value_type)])
        owner.nested_type.append(entry)
        owner.field.append(self.field(name, number, 'message', repeated=True,
                                      type_name='%s.%s' % (owner_full_name, entry.name)))

    def enum(self, name: str, *values) -> descriptor_pb2.EnumDescriptorProto:
        """``values`` are ``(NAME, number)`` pairs; proto3 wants the first one to be 0."""
        enum = descriptor_pb2.EnumDescriptorProto(name=name)
        for value_name, number in values:
            enum.value.add(name=value_name, number=number)
        return enum

    def file(self, name: str, package: str, messages: Iterable[Any] = (), enums: Iterable[Any] = (),
             dependencies: Iterable[str] = (), syntax: str = 'proto3') -> descriptor_pb2.FileDescriptorProto:
        fp = descriptor_pb2.FileDescriptorProto(name=name, package=package, syntax=syntax)
        fp.dependency.extend(dependencies)
        fp.message_type.extend(messages)
        fp.enum_type.extend(enums)
        return fp


@pytest.fixture(scope="session")
def proto() -> ProtoBuilder:
    """Return the descriptor proto builder."""
    return ProtoBuilder()


# =============================================================================
# Generated Module Harness
# =============================================================================

def install_module(monkeypatch, dotted: str, module: types.ModuleType) -> None:
    """Register ``module`` as ``dotted``, creating empty parent packages as needed."""
    parts = dotted.split('.')
    for i in range(1, len(parts)):
        parent = '.'.join(parts[:i])
        if parent not in sys.modules:
            package = types.ModuleType(parent)
            package.__path__ = []
            monkeypatch.setitem(sys.modules, parent, package)
    monkeypatch.setitem(sys.modules, dotted, module)
    if len(parts) > 1:
        monkeypatch.setattr(sys.modules['.'.join(parts[:-1])], parts[-1], module, raising=False)


def build_pb2_module(pool: descriptor_pool.DescriptorPool, fp: descriptor_pb2.FileDescriptorProto,
                     name: str) -> types.ModuleType:
    """Mimic the attributes protoc --python_out puts in a ``*_pb2`` module."""
    module = types.ModuleType(name)
    module.DESCRIPTOR = pool.FindFileByName(fp.name)
    prefix = fp.package + '.' if fp.package else ''
    for enum in fp.enum_type:
        wrapper = enum_type_wrapper.EnumTypeWrapper(pool.FindEnumTypeByName(prefix + enum.name))
        setattr(module, enum.name, wrapper)
        for value in enum.value:
            setattr(module, value.name, value.number)
    for msg in fp.message_type:
        cls = message_factory.GetMessageClass(pool.FindMessageTypeByName(prefix + msg.name))
        setattr(module, msg.name, cls)
    return module


class ValidatorBuild:
    """
    Result of one generation run with its modules installed.

    Attributes:
        index: The SchemaIndex the run was generated from
        sources: output file name -> generated source
        modules: schema file name -> executed validate module
    """

    def __init__(self, pool, index: SchemaIndex, sources: Dict[str, str],
                 modules: Dict[str, types.ModuleType]):
        self.pool = pool
        self.index = index
        self.sources = sources
        self.modules = modules

    def source(self, proto_name: str) -> str:
        return self.sources[self.index.file(proto_name).output_filename]

    def new(self, full_name: str, **kwargs) -> Any:
        """Instantiate message ``full_name`` from the run's descriptor pool."""
        cls = message_factory.GetMessageClass(self.pool.FindMessageTypeByName(full_name))
        return cls(**kwargs)

    def validator(self, full_name: str):
        info = self.index.messages[full_name]
        return getattr(self.modules[info.schema.name], info.function_name)

    def validate(self, full_name: str, message: Any) -> None:
        return self.validator(full_name)(message)


@pytest.fixture
def build_validators(monkeypatch):
    """
    Generate validate modules for a list of descriptor protos and install them.

    ``files`` must be given in dependency order. ``rules`` is the JSON-shaped
    rule document, ``functions`` maps custom function names to templates.
    """
    def build(files: List[descriptor_pb2.FileDescriptorProto],
              rules: Optional[Mapping[str, Any]] = None,
              functions: Optional[Mapping[str, str]] = None,
              generate: Optional[Iterable[str]] = None) -> ValidatorBuild:
        pool = descriptor_pool.DescriptorPool()
        for fp in files:
            pool.AddSerializedFile(fp.SerializeToString())

        index = SchemaIndex(files, generate=generate)
        registry = FunctionRegistry.from_templates(functions or {})
        sources = generate_files(index, parse_rule_document(rules or {}), registry)

        for fp in files:
            pb2_name = module_path(fp.name, '_pb2')
            install_module(monkeypatch, pb2_name, build_pb2_module(pool, fp, pb2_name))

        modules = {}
        for fp in files:
            schema = index.file(fp.name)
            if not index.is_generated(schema):
                continue
            module = types.ModuleType(schema.validate_module)
            install_module(monkeypatch, schema.validate_module, module)
            source = sources[schema.output_filename]
            exec(compile(source, schema.output_filename, 'exec'), module.__dict__)
            modules[fp.name] = module
        return ValidatorBuild(pool, index, sources, modules)

    return build


@pytest.fixture
def generate_source():
    """Generate the source of one file without installing anything."""
    def generate(files: List[descriptor_pb2.FileDescriptorProto], name: str,
                 rules: Optional[Mapping[str, Any]] = None,
                 functions: Optional[Mapping[str, str]] = None) -> str:
        index = SchemaIndex(files)
        registry = FunctionRegistry.from_templates(functions or {})
        sources = generate_files(index, parse_rule_document(rules or {}), registry, [name])
        return sources[index.file(name).output_filename]

    return generate


# =============================================================================
# Common Schemas
# =============================================================================

@pytest.fixture
def person_file(proto):
    """
    ``vtest/person.proto``: a Person with scalar, list, map, enum and nested
    message fields, plus a top-level Status enum.
    """
    status = proto.enum('Status', ('STATUS_UNKNOWN', 0), ('ACTIVE', 1), ('RETIRED', 2))
    address = proto.message(
        'Address',
        proto.field('city', 1, 'string'),
        proto.field('zip', 2, 'string'),
    )
    person = proto.message(
        'Person',
        proto.field('name', 1, 'string'),
        proto.field('age', 2, 'int32'),
        proto.field('tags', 3, 'string', repeated=True),
        proto.field('addr', 4, 'message', type_name='vtest.Address'),
        proto.field('status', 5, 'enum', type_name='vtest.Status'),
        proto.field('score', 6, 'double'),
        proto.field('ratio', 7, 'float'),
        proto.field('active', 8, 'bool'),
        proto.field('payload', 9, 'bytes'),
        proto.field('max_age', 10, 'int32'),
    )
    proto.map_field(person, 'vtest.Person', 'labels', 11, 'string', 'string')
    return proto.file('vtest/person.proto', 'vtest', [address, person], [status])
