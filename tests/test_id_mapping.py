"""Tests for id_mapping.py: short id <-> internal id store.

Covers:
- parse/load/save of mappings/ids.yml
- merge_id_mappings() union with local precedence
- subset() restriction
- short id generation and reconcile_mappings()
"""

from unittest.mock import patch

import pytest

from conftest import ULID_STEM, make_id
from tracker_sync.id_mapping import (
    IdMapping,
    extract_ulid,
    generate_unique_short_id,
    load_id_mapping,
    mapping_path,
    merge_id_mappings,
    optimal_short_id_length,
    parse_id_mapping,
    reconcile_mappings,
    save_id_mapping,
)


def ulid(n: int) -> str:
    return f"{ULID_STEM}{n:04d}"


def mapping_of(**pairs: int) -> IdMapping:
    mapping = IdMapping()
    for short_id, n in pairs.items():
        mapping.add(ulid(n), short_id)
    return mapping


class TestPersistence:
    """Tests for parse_id_mapping(), load_id_mapping(), save_id_mapping()."""

    def test_missing_file_is_empty(self, tmp_path):
        assert len(load_id_mapping(tmp_path)) == 0

    def test_save_then_load(self, tmp_path):
        mapping = mapping_of(a7k2=1, b3m9=2)
        save_id_mapping(tmp_path, mapping)
        loaded = load_id_mapping(tmp_path)
        assert loaded.to_dict() == mapping.to_dict()
        assert loaded.short_id_for(make_id(2)) == "b3m9"

    def test_saved_in_natural_order(self, tmp_path):
        save_id_mapping(tmp_path, mapping_of(a10=1, a9=2, a1=3))
        keys = [line.split(":")[0] for line in mapping_path(tmp_path).read_text().splitlines()]
        assert keys == ["a1", "a9", "a10"]

    def test_empty_mapping_written_as_empty_dict(self, tmp_path):
        save_id_mapping(tmp_path, IdMapping())
        assert mapping_path(tmp_path).read_text() == "{}\n"

    def test_non_mapping_rejected(self):
        with pytest.raises(ValueError, match="not a mapping"):
            parse_id_mapping("- a\n- b\n")

    def test_bad_entry_rejected(self):
        with pytest.raises(ValueError, match="Invalid ID mapping"):
            parse_id_mapping("a7k2: not-a-ulid\n")

    def test_empty_document(self):
        assert len(parse_id_mapping("")) == 0


class TestMerge:
    """Tests for merge_id_mappings() and subset()."""

    def test_union(self):
        merged = merge_id_mappings(mapping_of(aaaa=1), mapping_of(bbbb=2))
        assert merged.to_dict() == {"aaaa": ulid(1), "bbbb": ulid(2)}

    def test_local_wins_short_id_clash(self, caplog):
        merged = merge_id_mappings(mapping_of(aaaa=1), mapping_of(aaaa=2))
        assert merged.to_dict() == {"aaaa": ulid(1)}
        assert "keeping local" in caplog.text

    def test_local_wins_ulid_clash(self):
        merged = merge_id_mappings(mapping_of(aaaa=1), mapping_of(bbbb=1))
        assert merged.to_dict() == {"aaaa": ulid(1)}

    def test_inputs_not_mutated(self):
        local = mapping_of(aaaa=1)
        merge_id_mappings(local, mapping_of(bbbb=2))
        assert len(local) == 1

    def test_subset(self):
        mapping = mapping_of(aaaa=1, bbbb=2, cccc=3)
        assert mapping.subset([make_id(1), make_id(3), make_id(9)]).to_dict() == {
            "aaaa": ulid(1),
            "cccc": ulid(3),
        }

    def test_extract_ulid(self):
        assert extract_ulid(make_id(1)) == ulid(1)


class TestGeneration:
    """Tests for short id generation and reconciliation."""

    def test_optimal_length(self):
        assert optimal_short_id_length(0) == 4
        assert optimal_short_id_length(49_999) == 4
        assert optimal_short_id_length(50_000) == 5

    def test_unique_id_avoids_existing(self):
        mapping = mapping_of(aaaa=1)
        with patch(
            "tracker_sync.id_mapping.generate_short_id",
            side_effect=["aaaa", "aaaa", "bbbb"],
        ):
            assert generate_unique_short_id(mapping) == "bbbb"

    def test_unique_id_gives_up(self):
        mapping = mapping_of(aaaa=1)
        with patch("tracker_sync.id_mapping.generate_short_id", return_value="aaaa"):
            with pytest.raises(RuntimeError, match="unique short id"):
                generate_unique_short_id(mapping)

    def test_reconcile_creates_missing(self):
        mapping = mapping_of(aaaa=1)
        result = reconcile_mappings([make_id(1), make_id(2)], mapping)
        assert result.created == [make_id(2)]
        assert result.total == 1
        assert mapping.short_id_for(make_id(2)) is not None

    def test_reconcile_recovers_historical(self):
        mapping = IdMapping()
        historical = mapping_of(zzzz=5)
        result = reconcile_mappings([make_id(5)], mapping, historical)
        assert result.recovered == [make_id(5)]
        assert mapping.short_id_for(make_id(5)) == "zzzz"

    def test_reconcile_historical_taken_generates_new(self):
        mapping = mapping_of(zzzz=1)
        historical = mapping_of(zzzz=5)
        result = reconcile_mappings([make_id(5)], mapping, historical)
        assert result.created == [make_id(5)]
        assert mapping.short_id_for(make_id(5)) != "zzzz"
