"""
Unit tests for descriptor building, validation and caching.
"""
import threading
from dataclasses import dataclass

import numpy as np
import pytest
from dbmap.descriptor import IndexGroup, build_descriptor, cached_descriptors
from dbmap.descriptor import clear_descriptor_cache, describe, parse_index
from dbmap.exceptions import DescribeError, DuplicateColumnError
from dbmap.exceptions import DuplicateIndexSequenceError, MalformedIndexError
from dbmap.exceptions import MissingTableError, MultiplePrimaryKeyError
from dbmap.exceptions import MultipleTableError, NoManagedFieldsError
from dbmap.exceptions import NotARecordError, PrimaryKeyTypeError
from dbmap.exceptions import UnknownColumnError, UnsupportedFieldTypeError
from dbmap.fields import column, primary_key, table_name
from dbmap.types import StorageClass
from tests.fixtures.records import Log, Rec, Sample, Sized


class TestBuild:
    """Descriptors built from valid record types"""

    def test_columns_in_declaration_order(self):
        dsc = describe(Sample)
        assert dsc.table == 'sample'
        assert dsc.column_names == ('A', 'B', 'C', 'data', 'flag', 'note')
        assert [c.field for c in dsc.columns] == ['a', 'b', 'c', 'data', 'flag', 'note']

    def test_storage_classes(self):
        dsc = describe(Sample)
        storage = {c.name: c.storage for c in dsc.columns}
        assert storage['A'] is StorageClass.NUMERIC
        assert storage['B'] is StorageClass.TEXT
        assert storage['C'] is StorageClass.NUMERIC
        assert storage['data'] is StorageClass.BINARY
        assert storage['flag'] is StorageClass.NUMERIC

    def test_primary_key_is_not_a_column(self):
        dsc = describe(Sample)
        assert dsc.has_primary_key
        assert dsc.primary_key.field == 'id'
        assert 'id' not in dsc.column_names

    def test_numpy_primary_key(self):
        dsc = describe(Sized)
        assert dsc.primary_key.field == 'id'
        assert dsc.primary_key.scalar.python_type is np.int64

    def test_nullable_column(self):
        dsc = describe(Sample)
        assert dsc.column('note').nullable is True
        assert dsc.column('B').nullable is False

    def test_cached_fragments(self):
        dsc = describe(Sample)
        assert dsc.column_list == '"A", "B", "C", "data", "flag", "note"'
        assert dsc.placeholder_list == '?, ?, ?, ?, ?, ?'
        assert dsc.create_columns == ('"A" integer, "B" text, "C" real, '
                                      '"data" blob, "flag" integer, "note" text')
        assert dsc.select_list == 'rowid, "A", "B", "C", "data", "flag", "note"'

    def test_no_primary_key(self):
        dsc = describe(Log)
        assert dsc.table == 'log'
        assert dsc.primary_key is None
        assert dsc.select_list == '"message", "level"'

    def test_wildcard_index(self):
        dsc = describe(Rec)
        assert dsc.indexes == (IndexGroup('Name', ('Name',)),)

    def test_index_groups_sorted_by_sequence(self):
        dsc = describe(Sample)
        assert dsc.indexes == (IndexGroup('byBC', ('B', 'C')),)

    def test_structured_index_declarations(self):
        dsc = describe(Log)
        assert dsc.indexes == (
            IndexGroup('byMessage', ('message',)),
            IndexGroup('byLevelMessage', ('level', 'message')),
        )

    def test_column_lookup(self):
        dsc = describe(Sample)
        assert dsc.column('A').field == 'a'
        with pytest.raises(UnknownColumnError):
            dsc.column('a')

    @pytest.mark.parametrize('name', [{'B', 'C'}, ['B'], ('B',), 1, None])
    def test_column_lookup_requires_a_name(self, name):
        with pytest.raises(UnknownColumnError, match='must be strings'):
            describe(Sample).column(name)

    @pytest.mark.parametrize(('names', 'expected'), [
        (None, ('A', 'B', 'C', 'data', 'flag', 'note')),
        ((), ('A', 'B', 'C', 'data', 'flag', 'note')),
        (('*',), ('A', 'B', 'C', 'data', 'flag', 'note')),
        (('C', 'A'), ('C', 'A')),
    ])
    def test_resolve_columns(self, names, expected):
        dsc = describe(Sample)
        assert tuple(c.name for c in dsc.resolve_columns(names)) == expected

    def test_descriptor_is_immutable(self):
        dsc = describe(Sample)
        with pytest.raises(AttributeError):
            dsc.table = 'other'


class TestValidation:
    """Describe-time errors"""

    def test_not_a_dataclass(self):
        class Plain:
            name: str = ''

        with pytest.raises(NotARecordError):
            describe(Plain)

    def test_no_managed_fields(self):
        @dataclass
        class Empty:
            id: int = primary_key(table='empty')
            other: str = ''

        with pytest.raises(NoManagedFieldsError):
            describe(Empty)

    def test_missing_table(self):
        @dataclass
        class NoTable:
            name: str = column('*', default='')

        with pytest.raises(MissingTableError):
            describe(NoTable)

    def test_multiple_tables(self):
        @dataclass
        class TwoTables:
            id: int = primary_key(table='one')
            name: str = column('*', table='two', default='')

        with pytest.raises(MultipleTableError):
            describe(TwoTables)

    def test_multiple_primary_keys(self):
        @dataclass
        class TwoKeys:
            id: int = primary_key(table='two_keys')
            other_id: int = primary_key()
            name: str = column('*', default='')

        with pytest.raises(MultiplePrimaryKeyError):
            describe(TwoKeys)

    @pytest.mark.parametrize('key_type', [str, float, bool, np.int32, int | None])
    def test_primary_key_type(self, key_type):
        @dataclass
        class BadKey:
            id: key_type = primary_key(table='bad_key')
            name: str = column('*', default='')

        with pytest.raises(PrimaryKeyTypeError):
            describe(BadKey)

    def test_unsupported_field_type(self):
        @dataclass
        class BadType:
            id: int = primary_key(table='bad_type')
            tags: list = column('*', default=None)

        with pytest.raises(UnsupportedFieldTypeError):
            describe(BadType)

    def test_duplicate_column(self):
        @dataclass
        class Twice:
            id: int = primary_key(table='twice')
            a: int = column('value', default=0)
            b: int = column('value', default=0)

        with pytest.raises(DuplicateColumnError):
            describe(Twice)

    def test_malformed_index(self):
        @dataclass
        class BadIndex:
            id: int = primary_key(table='bad_index')
            a: int = column('*', index='byA', default=0)

        with pytest.raises(MalformedIndexError):
            describe(BadIndex)

    def test_duplicate_index_sequence(self):
        @dataclass
        class SameSequence:
            id: int = primary_key(table='same_sequence')
            a: int = column('*', index='grp1', default=0)
            b: int = column('*', index='grp1', default=0)

        with pytest.raises(DuplicateIndexSequenceError):
            describe(SameSequence)

    def test_errors_share_a_base(self):
        for exc in (NoManagedFieldsError, MissingTableError, MalformedIndexError,
                    DuplicateIndexSequenceError, NotARecordError):
            assert issubclass(exc, DescribeError)


class TestParseIndex:

    @pytest.mark.parametrize(('decl', 'expected'), [
        (None, []),
        ('*', [('col', 1)]),
        ('grp1', [('grp', 1)]),
        ('byName1, byNum2', [('byName', 1), ('byNum', 2)]),
        ('a_b12', [('a_b', 12)]),
        ([('grp', 3)], [('grp', 3)]),
        ((['grp', 1], ('other', 2)), [('grp', 1), ('other', 2)]),
    ])
    def test_valid(self, decl, expected):
        assert parse_index(decl, 'col') == expected

    @pytest.mark.parametrize('decl', [
        '', 'grp', '12', 'grp1,', 'grp1 x', 42, [('grp',)], [('grp', '1')],
        [('grp', True)], [(1, 1)], [('', 1)],
    ])
    def test_malformed(self, decl):
        with pytest.raises(MalformedIndexError):
            parse_index(decl, 'col')


class TestCache:

    def test_describe_returns_cached_descriptor(self):
        first = describe(Sample)
        assert describe(Sample) is first
        assert describe(Sample()) is first
        assert cached_descriptors() == {Sample: first}

    def test_build_bypasses_cache(self):
        built = build_descriptor(Sample)
        assert cached_descriptors() == {}
        assert built == describe(Sample)

    def test_failed_build_caches_nothing(self):
        @dataclass
        class Broken:
            name: str = column('*', default='')

        with pytest.raises(MissingTableError):
            describe(Broken)
        assert Broken not in cached_descriptors()

    def test_clear(self):
        first = describe(Rec)
        clear_descriptor_cache()
        assert describe(Rec) is not first

    def test_concurrent_describe_yields_one_descriptor(self):
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(describe(Sample))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert all(r is results[0] for r in results)

    def test_table_name_helper(self):
        @dataclass
        class Named:
            label: str = table_name('named', default='')
            value: int = column('*', default=0)

        assert describe(Named).table == 'named'
