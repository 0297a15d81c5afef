"""Tests for the pure query engine over synthetic type snapshots."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import pytest

from assembly_scanner.errors import ScanValidationError
from assembly_scanner.metadata.queries import (
    derives_from_any,
    find_all,
    find_first,
    implements_any,
    matches_type_name,
    should_include,
)
from assembly_scanner.metadata.records import TypeRecord
from assembly_scanner.options import ScanOptions
from tests.test_helpers.type_records import interface, record, type_name

ICOMMAND = "App.Commands.ICommand"


def _names(records: Iterable[TypeRecord]) -> list[str]:
    return [item.name for item in records]


def _counting(types: Iterable[TypeRecord], seen: list[str]) -> Iterator[TypeRecord]:
    for item in types:
        seen.append(item.name)
        yield item


def test_implementing_respects_visibility() -> None:
    """Return only public implementers unless non-public types are enabled."""
    types = [
        interface("ICommand"),
        record("CreateCommand", interfaces=(ICOMMAND,)),
        record("InternalCommand", interfaces=(ICOMMAND,), is_public=False),
    ]
    assert _names(find_all(types, "ICommand", implements_any)) == ["CreateCommand"]
    options = ScanOptions(include_non_public=True)
    assert _names(find_all(types, "ICommand", implements_any, options)) == [
        "CreateCommand",
        "InternalCommand",
    ]


def test_derived_is_transitive() -> None:
    """Match every ancestor in the base chain, not just the parent."""
    types = [
        record("Entity"),
        record("Model", bases=("App.Commands.Entity", "System.Object")),
        record("User", bases=("App.Commands.Model", "App.Commands.Entity", "System.Object")),
        record("Unrelated"),
    ]
    assert _names(find_all(types, "Entity", derives_from_any)) == ["Model", "User"]
    assert _names(find_all(types, ["Model"], derives_from_any)) == ["User"]


def test_multiple_names_are_ored() -> None:
    """Match a type conforming to any of several names."""
    types = [
        record("A", interfaces=("App.IFirst",)),
        record("B", interfaces=("App.ISecond",)),
        record("C", interfaces=("App.IThird",)),
    ]
    assert _names(find_all(types, ["IFirst", "ISecond"], implements_any)) == ["A", "B"]


def test_flattened_interfaces_match() -> None:
    """Match interfaces inherited through other interfaces or bases."""
    types = [record("Handler", interfaces=("App.IHandler", "App.IMarker"))]
    assert _names(find_all(types, "IMarker", implements_any)) == ["Handler"]


def test_generic_arity_disambiguates() -> None:
    """Keep ``Name`1`` and ``Name`2`` distinct in both matching modes."""
    types = [
        record("One", interfaces=("App.Commands.ICommand`1[[App.Commands.Dto, App]]",)),
        record(
            "Two",
            interfaces=(
                "App.Commands.ICommand`2[[App.Commands.Dto, App],[System.Int32, System.Private.CoreLib]]",
            ),
        ),
    ]
    assert _names(find_all(types, "ICommand`1", implements_any)) == ["One"]
    assert _names(find_all(types, "ICommand`2", implements_any)) == ["Two"]
    assert find_all(types, "ICommand", implements_any) == []
    full = ScanOptions(match_full_name=True)
    assert _names(find_all(types, "App.Commands.ICommand`1", implements_any, full)) == ["One"]
    assert _names(find_all(types, "App.Commands.ICommand`2", implements_any, full)) == ["Two"]


def test_full_name_truncates_type_arguments() -> None:
    """Compare instantiated generics by their open qualified name."""
    instantiated = type_name("App.ICommand`1[[App.Dto, App]]")
    assert matches_type_name(instantiated, "App.ICommand`1", match_full_name=True)
    assert not matches_type_name(instantiated, "App.ICommand", match_full_name=True)
    assert matches_type_name(instantiated, "ICommand`1", match_full_name=False)
    plain = type_name("App.Dto")
    assert matches_type_name(plain, "App.Dto", match_full_name=True)
    assert not matches_type_name(plain, "Dto", match_full_name=True)


@pytest.mark.parametrize("target_full", [False, True])
@pytest.mark.parametrize("names_full", [False, True])
def test_target_and_name_modes_are_independent(*, target_full: bool, names_full: bool) -> None:
    """Exercise every combination of target and conformance matching modes."""
    types = [
        record("CreateUser", namespace="App.Users", interfaces=(ICOMMAND,)),
    ]
    target = "App.Users.CreateUser" if target_full else "CreateUser"
    wrong_target = "CreateUser" if target_full else "App.Users.CreateUser"
    name = ICOMMAND if names_full else "ICommand"
    wrong_name = "ICommand" if names_full else ICOMMAND
    options = ScanOptions(match_full_name=names_full)

    found = find_first(
        types, target, name, implements_any, options, match_target_full_name=target_full
    )
    assert found is not None
    assert found.name == "CreateUser"
    assert (
        find_first(
            types, wrong_target, name, implements_any, options, match_target_full_name=target_full
        )
        is None
    )
    assert (
        find_first(
            types, target, wrong_name, implements_any, options, match_target_full_name=target_full
        )
        is None
    )


def test_find_first_stops_at_first_match() -> None:
    """Stop iterating as soon as a matching type is found."""
    types = [
        record("Other", interfaces=(ICOMMAND,)),
        record("Target", interfaces=(ICOMMAND,)),
        record("Target", namespace="App.Second", interfaces=(ICOMMAND,)),
        record("Tail", interfaces=(ICOMMAND,)),
    ]
    seen: list[str] = []
    found = find_first(_counting(types, seen), "Target", "ICommand", implements_any)
    assert found is not None
    assert found.full_name == "App.Commands.Target"
    assert seen == ["Other", "Target"]


def test_find_first_applies_inclusion() -> None:
    """Skip a name match that fails the inclusion filters."""
    types = [
        record("Target", is_abstract=True, bases=("App.Base",)),
        record("Target", namespace="App.Concrete", bases=("App.Base",)),
    ]
    found = find_first(types, "Target", "Base", derives_from_any)
    assert found is not None
    assert found.namespace == "App.Concrete"


def test_find_first_without_match() -> None:
    """Return None when nothing qualifies."""
    assert find_first([record("Solo")], "Solo", "IMissing", implements_any) is None


@pytest.mark.parametrize(
    ("item", "options", "expected"),
    [
        (record("Plain"), ScanOptions(), True),
        (record("Abstract", is_abstract=True), ScanOptions(), False),
        (record("Abstract", is_abstract=True), ScanOptions(include_abstract=True), True),
        (interface("IThing"), ScanOptions(include_abstract=True), False),
        (record("Point", is_value_type=True), ScanOptions(), False),
        (record("Point", is_value_type=True), ScanOptions(include_structs=True), True),
        (record("Hidden", is_public=False), ScanOptions(), False),
        (record("Hidden", is_public=False), ScanOptions(include_non_public=True), True),
        (record("Inner", is_nested=True, is_nested_public=True), ScanOptions(), False),
        (
            record("Inner", is_nested=True, is_nested_public=True),
            ScanOptions(include_nested_types=True),
            True,
        ),
        (
            record("Private", is_nested=True),
            ScanOptions(include_nested_types=True),
            False,
        ),
        (
            record("Private", is_nested=True),
            ScanOptions(include_nested_types=True, include_non_public=True),
            True,
        ),
    ],
)
def test_inclusion_predicate(item: TypeRecord, options: ScanOptions, expected: bool) -> None:
    """Apply kind, abstract, visibility and nesting filters."""
    assert should_include(item, options) is expected


@pytest.mark.parametrize("names", [[], [""], ["ICommand", "  "], "", "   "])
def test_blank_names_rejected(names: str | list[str]) -> None:
    """Reject empty name lists and blank names."""
    with pytest.raises(ScanValidationError):
        find_all([record("A")], names, implements_any)


def test_blank_target_rejected() -> None:
    """Reject a blank target type name."""
    with pytest.raises(ScanValidationError):
        find_first([record("A")], " ", "ICommand", implements_any)
