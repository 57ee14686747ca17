"""
Tests for the schema index, naming helpers and field views.
"""

import pytest

from protoc_gen_validator.errors import GenerationError
from protoc_gen_validator.schema import (ELEMENT, KEY, LIST, MAP, SINGULAR, VALUE, EnumConstant,
                                         FieldDescriptorProto, FieldView, SchemaIndex, field_accessor, import_statement,
                                         module_alias, module_path)


class TestNaming:

    def test_field_accessor(self):
        assert field_accessor('m', 'age') == 'm.age'
        assert field_accessor('m', 'from') == "getattr(m, 'from')"
        assert field_accessor('m', 'limits.max') == 'm.limits.max'
        assert field_accessor('m', 'class.lambda') == "getattr(getattr(m, 'class'), 'lambda')"

    def test_module_names(self):
        assert module_path('vtest/person.proto', '_pb2') == 'vtest.person_pb2'
        assert module_path('my-api/v1/user-info.proto', '_validate') == 'my_api.v1.user_info_validate'
        assert module_alias('vtest.person_pb2') == 'vtest_dot_person__pb2'

    def test_import_statement(self):
        assert import_statement('time') == 'import time'
        assert import_statement('person_pb2', 'person__pb2') == 'import person_pb2 as person__pb2'
        assert import_statement('a.b.c_pb2', 'a_dot_b_dot_c__pb2') == 'from a.b import c_pb2 as a_dot_b_dot_c__pb2'


class TestSchemaIndex:

    def test_schema_file_names(self, person_file):
        schema = SchemaIndex([person_file]).file('vtest/person.proto')
        assert schema.package == 'vtest'
        assert schema.messages_alias == 'vtest_dot_person__pb2'
        assert schema.validate_alias == 'vtest_dot_person__validate'
        assert schema.output_filename == 'vtest/person_validate.py'

    def test_messages_in_pre_order_without_map_entries(self, proto):
        inner = proto.message('Inner', nested=[proto.message('Deep')])
        outer = proto.message('Outer', nested=[inner])
        proto.map_field(outer, 'vtest.Outer', 'labels', 1, 'string', 'string')
        fp = proto.file('vtest/outer.proto', 'vtest', [outer, proto.message('Last')])
        index = SchemaIndex([fp])

        infos = index.messages_of(index.file('vtest/outer.proto'))
        assert [i.full_name for i in infos] == ['vtest.Outer', 'vtest.Outer.Inner', 'vtest.Outer.Inner.Deep',
                                               'vtest.Last']
        assert [i.function_name for i in infos] == ['validate_Outer', 'validate_Outer_Inner',
                                                   'validate_Outer_Inner_Deep', 'validate_Last']
        assert index.messages['vtest.Outer.LabelsEntry'].is_map_entry

    def test_lookup_errors(self, person_file):
        index = SchemaIndex([person_file])
        assert index.message('.vtest.Person').name == 'Person'
        with pytest.raises(GenerationError):
            index.message('vtest.Nobody')
        with pytest.raises(GenerationError):
            index.enum('vtest.Nothing')
        with pytest.raises(GenerationError):
            index.file('other.proto')

    def test_generated_excludes_well_known_types(self, proto, person_file):
        wkt = proto.file('google/protobuf/empty.proto', 'google.protobuf', [proto.message('Empty')])
        index = SchemaIndex([wkt, person_file])
        assert index.generated == frozenset(['vtest/person.proto'])
        assert SchemaIndex([wkt, person_file], generate=[]).generated == frozenset()

    @pytest.mark.parametrize('identifier', ['Status.RETIRED', 'vtest.Status.RETIRED'])
    def test_resolve_enum_constant(self, person_file, identifier):
        constant = SchemaIndex([person_file]).resolve_enum_constant(identifier, 'vtest')
        assert (constant.name, constant.number) == ('RETIRED', 2)
        assert constant.symbol == 'vtest_dot_person__pb2.RETIRED'

    def test_nested_enum_symbol(self, proto):
        kind = proto.enum('Kind', ('KIND_UNSET', 0), ('FULL', 1))
        fp = proto.file('vtest/job.proto', 'vtest', [proto.message('Job', enums=[kind])])
        enum = SchemaIndex([fp]).enum('vtest.Job.Kind')
        assert enum.numbers == (0, 1)
        assert EnumConstant(enum, 'FULL', 1).symbol == 'vtest_dot_job__pb2.Job.FULL'

    @pytest.mark.parametrize('identifier', ['RETIRED', '.Status.RETIRED', 'vtest..Status.RETIRED'])
    def test_resolve_wrong_format(self, person_file, identifier):
        with pytest.raises(GenerationError) as exc:
            SchemaIndex([person_file]).resolve_enum_constant(identifier, 'vtest')
        assert 'wrong format for enum rule' in str(exc.value)

    def test_resolve_unknown(self, person_file):
        with pytest.raises(GenerationError) as exc:
            SchemaIndex([person_file]).resolve_enum_constant('Status.GONE', 'vtest')
        assert str(exc.value) == "can not find enum value 'Status.GONE' in package 'vtest'"


class TestFieldView:
    """Real fields come from descriptors, elements and entries are derived."""

    def field(self, index, name):
        return index.message('vtest.Person').field(name)

    def test_cardinality(self, person_file):
        index = SchemaIndex([person_file])
        views = {name: FieldView.from_descriptor(self.field(index, name), index)
                 for name in ('age', 'tags', 'labels', 'addr')}
        assert views['age'].cardinality == SINGULAR
        assert views['tags'].cardinality == LIST
        assert views['labels'].cardinality == MAP
        assert views['addr'].is_message
        assert not views['tags'].is_message
        assert views['addr'].type_name == 'vtest.Address'

    def test_derive_element(self, person_file):
        index = SchemaIndex([person_file])
        tags = FieldView.from_descriptor(self.field(index, 'tags'), index)
        element = tags.derive(ELEMENT, index)
        assert element.synthetic
        assert element.cardinality == SINGULAR
        assert element.is_string
        with pytest.raises(GenerationError):
            tags.derive(KEY, index)

    def test_derive_key_and_value(self, person_file):
        index = SchemaIndex([person_file])
        labels = FieldView.from_descriptor(self.field(index, 'labels'), index)
        assert labels.derive(KEY, index).kind == FieldDescriptorProto.TYPE_STRING
        value = labels.derive(VALUE, index)
        assert value.kind == FieldDescriptorProto.TYPE_STRING
        assert value.name == 'labels'
        with pytest.raises(GenerationError):
            labels.derive(ELEMENT, index)

    def test_numeric_cast(self, person_file):
        index = SchemaIndex([person_file])
        casts = {name: FieldView.from_descriptor(self.field(index, name), index).numeric_cast
                 for name in ('age', 'score', 'ratio', 'name')}
        assert casts == {'age': 'int', 'score': 'float', 'ratio': 'float32', 'name': None}
