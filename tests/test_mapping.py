"""Tests for the old-id -> new-id mapping tables."""

from decimal import Decimal

import pytest

from legacy_migrator.services.mapping import (
    MappingConflictError,
    MappingRegistry,
    MappingTable,
    normalize_id,
)


@pytest.mark.unit
def test_get_returns_none_when_absent():
    # Arrange
    table = MappingTable("organisation")

    # Act & Assert
    assert table.get(1) is None
    assert 1 not in table
    assert len(table) == 0


@pytest.mark.unit
def test_numeric_forms_share_one_entry():
    # Arrange
    table = MappingTable("organisation")

    # Act
    table.set(5, 12)

    # Assert
    assert table.get("5") == 12
    assert table.get(Decimal("5")) == 12
    assert table.get(5.0) == 12
    assert len(table) == 1


@pytest.mark.unit
def test_setting_same_value_twice_is_allowed():
    # Arrange
    table = MappingTable("branch")
    table.set(1, 100)

    # Act
    table.set("1", 100)

    # Assert
    assert table.get(1) == 100


@pytest.mark.unit
def test_remapping_to_a_different_value_raises():
    # Arrange
    table = MappingTable("branch")
    table.set(1, 100)

    # Act & Assert
    with pytest.raises(MappingConflictError):
        table.set(1, 101)
    assert table.get(1) == 100


@pytest.mark.unit
def test_none_key_is_ignored():
    # Arrange
    table = MappingTable("user")

    # Act
    table.set(None, 3)
    table.set("  ", 4)

    # Assert
    assert len(table) == 0


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, expected",
    [
        (7, 7),
        ("7", 7),
        (" 7 ", 7),
        (Decimal("7"), 7),
        ("abc", "abc"),
        ("", None),
        (None, None),
        (True, None),
    ],
)
def test_normalize_id(value, expected):
    assert normalize_id(value) == expected


@pytest.mark.unit
def test_registry_creates_tables_on_first_use():
    # Arrange
    registry = MappingRegistry()

    # Act
    registry.table("organisation").set(1, 10)

    # Assert
    assert registry.get("organisation", 1) == 10
    assert registry.get("branch", 1) is None
    assert registry.sizes() == {"organisation": 1}
