"""Tests for row transformation helpers and the TransformEngine."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text

from legacy_migrator.models.record import SourceRow
from legacy_migrator.models.schema import (
    ArrayForeignKey,
    EntitySpec,
    ForeignKey,
    UnmappedPolicy,
)
from legacy_migrator.services.mapping import MappingRegistry, MappingTable
from legacy_migrator.services.schema_registry import SchemaRegistry
from legacy_migrator.services.transformer import (
    TransformEngine,
    is_newer,
    parse_id_list,
    parse_json,
    parse_timestamp,
    preserve_field,
    preserve_with_fallback,
    remap_id_list,
)


@pytest.mark.unit
@pytest.mark.parametrize("value", [0, "", False])
def test_preserve_field_keeps_falsy_values(value):
    assert preserve_field(value, "default") == value


@pytest.mark.unit
def test_preserve_field_defaults_none():
    assert preserve_field(None, "default") == "default"


@pytest.mark.unit
def test_preserve_with_fallback_replaces_empty_string():
    assert preserve_with_fallback("", "x") == "x"
    assert preserve_with_fallback(None, "x") == "x"
    assert preserve_with_fallback(0, "x") == 0
    assert preserve_with_fallback(False, "x") is False


@pytest.mark.unit
def test_parse_json():
    assert parse_json('{"city": "Durban"}') == {"city": "Durban"}
    assert parse_json("[1, 2]") == [1, 2]
    assert parse_json({"a": 1}) == {"a": 1}
    assert parse_json("not json", default={}) == {}
    assert parse_json(None, default=[]) == []


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, expected",
    [
        ("[1, 2, 3]", [1, 2, 3]),
        ("1,2,3", [1, 2, 3]),
        ("4", [4]),
        (7, [7]),
        ([1, "2", None], [1, 2]),
        ('["5", "null", "undefined", ""]', [5]),
        ("0, 3", [0, 3]),
        ("a, 9", [9]),
        ("", []),
        (None, []),
    ],
)
def test_parse_id_list(value, expected):
    assert parse_id_list(value) == expected


@pytest.mark.unit
def test_remap_id_list_preserve_keeps_unmapped_ids():
    # Arrange
    mapping = MappingTable("device")
    mapping.set(5, 12)

    # Act
    result = remap_id_list([5, 9], mapping, UnmappedPolicy.PRESERVE)

    # Assert
    assert result == [12, 9]


@pytest.mark.unit
def test_remap_id_list_drop_removes_unmapped_ids():
    # Arrange
    mapping = MappingTable("branch")
    mapping.set(5, 12)

    # Act
    result = remap_id_list("[5, 9]", mapping, UnmappedPolicy.DROP)

    # Assert
    assert result == [12]


@pytest.mark.unit
def test_remap_id_list_empty_result():
    mapping = MappingTable("branch")

    assert remap_id_list([9], mapping, UnmappedPolicy.DROP) is None
    assert remap_id_list([9], mapping, UnmappedPolicy.DROP, allow_empty=False) == []


@pytest.mark.unit
def test_parse_timestamp():
    assert parse_timestamp("2024-12-05 08:30:00") == datetime(2024, 12, 5, 8, 30)
    assert parse_timestamp("garbage") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)


@pytest.mark.unit
def test_is_newer_is_strict():
    ts = datetime(2024, 12, 1, 12, 0)

    assert is_newer(ts + timedelta(seconds=1), ts)
    assert not is_newer(ts, ts)
    assert not is_newer(ts - timedelta(seconds=1), ts)


@pytest.mark.unit
def test_is_newer_missing_side_is_false():
    assert not is_newer(None, datetime(2024, 1, 1))
    assert not is_newer(datetime(2024, 1, 1), None)


@pytest.mark.unit
def test_is_newer_mixes_naive_and_aware():
    aware = datetime(2024, 12, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))  # 10:00 UTC
    naive = datetime(2024, 12, 1, 11, 0)

    assert is_newer(naive, aware)
    assert not is_newer(aware, naive)


def _resolve(spec, source_columns, target_types, pk=("uid",)):
    return SchemaRegistry().resolve(
        spec,
        source_columns,
        list(target_types),
        target_types=target_types,
        target_primary_key=list(pk),
    )


BRANCH_SPEC = EntitySpec(
    key="branch",
    group="branches",
    label="Branches",
    source_table="branch",
    foreign_keys=[ForeignKey(["organisationUid"], "organisation", ["organisationRef", "organisationUid"])],
    natural_keys=[["ref"]],
    json_fields=["address"],
    fallbacks={"name": "Unknown Branch"},
    defaults={"isDeleted": False},
)

BRANCH_TYPES = {
    "uid": Integer(),
    "name": String(),
    "ref": String(),
    "address": JSON(),
    "isDeleted": Boolean(),
    "organisationUid": Integer(),
}


@pytest.mark.unit
def test_build_resolves_foreign_key():
    # Arrange
    mappings = MappingRegistry()
    mappings.table("organisation").set(1, 40)
    resolved = _resolve(BRANCH_SPEC, ["uid", "name", "ref", "organisationRef", "address"], BRANCH_TYPES)
    row = SourceRow("branch", {"uid": 3, "name": "", "ref": "B1", "organisationRef": 1, "address": '{"city": "Cape Town"}'}, "uid")

    # Act
    outcome = TransformEngine().build(resolved, row, mappings)

    # Assert
    assert not outcome.skipped
    assert outcome.row.values["organisationUid"] == 40
    assert outcome.row.values["name"] == "Unknown Branch"
    assert outcome.row.values["address"] == {"city": "Cape Town"}
    assert outcome.row.values["isDeleted"] is False
    assert "uid" not in outcome.row.values
    assert outcome.row.natural_key == {"ref": "B1"}
    assert outcome.row.old_id == 3


@pytest.mark.unit
def test_build_skips_unmapped_required_reference():
    # Arrange
    mappings = MappingRegistry()
    mappings.table("organisation").set(1, 40)
    resolved = _resolve(BRANCH_SPEC, ["uid", "name", "ref", "organisationRef"], BRANCH_TYPES)
    row = SourceRow("branch", {"uid": 3, "name": "B", "ref": "B1", "organisationRef": 99}, "uid")

    # Act
    outcome = TransformEngine().build(resolved, row, mappings)

    # Assert
    assert outcome.skipped
    assert "99" in outcome.skip_reason


@pytest.mark.unit
def test_build_skips_missing_required_reference():
    resolved = _resolve(BRANCH_SPEC, ["uid", "name", "ref", "organisationRef"], BRANCH_TYPES)
    row = SourceRow("branch", {"uid": 3, "name": "B", "ref": "B1", "organisationRef": None}, "uid")

    outcome = TransformEngine().build(resolved, row, MappingRegistry())

    assert outcome.skipped
    assert outcome.skip_reason == "no organisation reference"


@pytest.mark.unit
def test_build_nulls_unmapped_optional_reference_and_keeps_falsy_values():
    # Arrange
    spec = EntitySpec(
        key="user",
        group="users",
        label="Users",
        source_table="users",
        foreign_keys=[
            ForeignKey(["organisationRef"], "organisation", ["organisationRef"], required=False, as_string=True),
            ForeignKey(["branchUid"], "branch", ["branchUid"], required=False),
        ],
        natural_keys=[["email"]],
    )
    types = {
        "uid": Integer(),
        "email": String(),
        "name": String(),
        "score": Integer(),
        "active": Boolean(),
        "organisationRef": String(),
        "branchUid": Integer(),
    }
    mappings = MappingRegistry()
    mappings.table("organisation").set(2, 8)
    resolved = _resolve(spec, list(types), types)
    row = SourceRow(
        "user",
        {"uid": 1, "email": "a@x.com", "name": "", "score": 0, "active": 0, "organisationRef": 2, "branchUid": 77},
        "uid",
    )

    # Act
    outcome = TransformEngine().build(resolved, row, mappings)

    # Assert
    values = outcome.row.values
    assert values["organisationRef"] == "8"
    assert values["branchUid"] is None
    assert values["name"] == ""
    assert values["score"] == 0
    assert values["active"] is False


@pytest.mark.unit
def test_build_remaps_arrays_and_defers_self_references():
    # Arrange
    spec = EntitySpec(
        key="user",
        group="users",
        label="Users",
        source_table="users",
        array_keys=[
            ArrayForeignKey("managedDoors", "device", ["managedDoors"], UnmappedPolicy.PRESERVE),
            ArrayForeignKey("managedBranches", "branch", ["managedBranches"], UnmappedPolicy.DROP),
            ArrayForeignKey("managedStaff", "user", ["managedStaff"], UnmappedPolicy.DROP, deferred=True),
        ],
    )
    types = {
        "uid": Integer(),
        "managedDoors": Text(),
        "managedBranches": Text(),
        "managedStaff": Text(),
    }
    mappings = MappingRegistry()
    mappings.table("device").set(5, 12)
    mappings.table("branch").set(5, 12)
    resolved = _resolve(spec, list(types), types)
    row = SourceRow(
        "user",
        {"uid": 1, "managedDoors": "[5, 9]", "managedBranches": "[5, 9]", "managedStaff": "[2, 3]"},
        "uid",
    )

    # Act
    outcome = TransformEngine().build(resolved, row, mappings)

    # Assert
    assert outcome.row.values["managedDoors"] == "12,9"
    assert outcome.row.values["managedBranches"] == "12"
    assert outcome.row.values["managedStaff"] is None
    assert outcome.row.deferred == {"managedStaff": "[2, 3]"}


@pytest.mark.unit
def test_natural_key_falls_back_to_second_alternative():
    # Arrange
    spec = EntitySpec(
        key="license",
        group="licenses",
        label="Licenses",
        source_table="licenses",
        foreign_keys=[ForeignKey(["organisationUid"], "organisation", ["organisationRef"])],
        natural_keys=[["licenseKey"], ["organisationUid", "type"]],
    )
    types = {"uid": Integer(), "licenseKey": String(), "type": String(), "organisationUid": Integer()}
    mappings = MappingRegistry()
    mappings.table("organisation").set(1, 4)
    resolved = _resolve(spec, ["uid", "licenseKey", "type", "organisationRef"], types)
    row = SourceRow("license", {"uid": 1, "licenseKey": None, "type": "perpetual", "organisationRef": 1}, "uid")

    # Act
    outcome = TransformEngine().build(resolved, row, mappings)

    # Assert
    assert outcome.row.natural_key == {"organisationUid": 4, "type": "perpetual"}


@pytest.mark.unit
def test_coerce_by_target_type():
    engine = TransformEngine()

    assert engine.coerce(1, Boolean()) is True
    assert engine.coerce("2024-12-01 10:00:00", DateTime()) == datetime(2024, 12, 1, 10, 0)
    assert engine.coerce('{"a": 1}', JSON()) == {"a": 1}
    assert engine.coerce([1, 2], String()) == "1,2"
    assert engine.coerce(5, Integer()) == 5
    assert engine.coerce(None, Boolean()) is None
