"""End-to-end resolution and scanning against a real dotnet toolchain."""

from __future__ import annotations

import shutil
from collections.abc import Iterator
from pathlib import Path

import pytest

from assembly_scanner import (
    BuildStrategy,
    MetadataScanner,
    ResolverOptions,
    ScanOptions,
    prepare_assembly_sync,
)
from assembly_scanner.errors import ResolutionError

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("dotnet") is None, reason="dotnet SDK not installed"),
]

PROJECT = """<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFramework>net8.0</TargetFramework>
    <Nullable>disable</Nullable>
    <ImplicitUsings>disable</ImplicitUsings>
  </PropertyGroup>
</Project>
"""

SOURCE = """
using System;
using System.Collections.Generic;

namespace Sample.Commands
{
    public interface ICommand { }
    public interface ICommand<TResult> : ICommand { }
    public interface ICommand<TResult, TContext> { }
    public interface IAuditable { }

    public class UserDto { }

    public class CreateCommand : ICommand { }
    internal class InternalCommand : ICommand { }
    public abstract class CommandBase : ICommand, IAuditable { }
    public class DerivedCommand : CommandBase { }
    public class GetUser : ICommand<UserDto> { }
    public class GetPair : ICommand<UserDto, int> { }
    public struct ValueCommand : ICommand { }
    public class Repository<T> : List<T>, ICommand<T> { }

    public class Outer
    {
        public class NestedCommand : ICommand { }
    }
}

namespace Sample.Domain
{
    public class Entity { }
    public class Model : Entity { }
    public class User : Model { }
}
"""


@pytest.fixture(scope="module")
def sample_artifact(tmp_path_factory: pytest.TempPathFactory) -> Iterator[Path]:
    """Build the sample project once and yield its artifact."""
    root = tmp_path_factory.mktemp("sample") / "Sample"
    root.mkdir()
    (root / "Sample.csproj").write_text(PROJECT, encoding="utf-8")
    (root / "Commands.cs").write_text(SOURCE, encoding="utf-8")
    result = prepare_assembly_sync(root / "Sample.csproj")
    assert result.built_automatically is True
    yield result.artifact_path


def test_second_resolution_reuses_artifact(sample_artifact: Path) -> None:
    """Skip the build when the artifact is already fresh."""
    descriptor = sample_artifact.parents[3] / "Sample.csproj"
    result = prepare_assembly_sync(descriptor, ResolverOptions(build_strategy=BuildStrategy.NEVER))
    assert result.built_automatically is False
    assert result.artifact_path == sample_artifact


def test_never_strategy_rejects_unbuilt_project(tmp_path: Path) -> None:
    """Reject an unbuilt project when builds are disabled."""
    project = tmp_path / "Stale"
    project.mkdir()
    (project / "Stale.csproj").write_text(PROJECT, encoding="utf-8")
    with pytest.raises(ResolutionError, match="building is disabled"):
        prepare_assembly_sync(
            project / "Stale.csproj",
            ResolverOptions(build_strategy=BuildStrategy.NEVER),
        )


def test_implementing_queries(sample_artifact: Path) -> None:
    """Find implementers with default and widened options."""
    with MetadataScanner(sample_artifact) as scanner:
        names = {item.name for item in scanner.find_types_implementing("ICommand")}
        assert names == {"CreateCommand", "DerivedCommand", "GetUser", "Repository`1"}
        widened = scanner.find_types_implementing(
            "ICommand",
            ScanOptions(
                include_non_public=True,
                include_structs=True,
                include_abstract=True,
                include_nested_types=True,
            ),
        )
        assert {item.name for item in widened} == {
            "CreateCommand",
            "InternalCommand",
            "CommandBase",
            "DerivedCommand",
            "GetUser",
            "ValueCommand",
            "Repository`1",
            "NestedCommand",
        }
        auditable = scanner.find_types_implementing("IAuditable")
        assert [item.name for item in auditable] == ["DerivedCommand"]


def test_generic_arity_and_full_names(sample_artifact: Path) -> None:
    """Disambiguate generic arity and match open generic full names."""
    with MetadataScanner(sample_artifact) as scanner:
        one = scanner.find_types_implementing("ICommand`1")
        assert {item.name for item in one} == {"GetUser", "Repository`1"}
        two = scanner.find_types_implementing("ICommand`2")
        assert [item.name for item in two] == ["GetPair"]
        full = scanner.find_types_implementing(
            "Sample.Commands.ICommand`1", ScanOptions(match_full_name=True)
        )
        assert {item.name for item in full} == {"GetUser", "Repository`1"}
        found = scanner.find_type_by_name_implementing(
            "Sample.Commands.GetUser",
            "Sample.Commands.ICommand`1",
            ScanOptions(match_full_name=True),
            match_target_full_name=True,
        )
        assert found is not None
        assert any("UserDto" in iface.full_name for iface in found.interfaces)


def test_transitive_derivation(sample_artifact: Path) -> None:
    """Walk the whole base chain, including framework bases."""
    with MetadataScanner(sample_artifact) as scanner:
        derived = scanner.find_types_derived_from("Entity")
        assert {item.name for item in derived} == {"Model", "User"}
        lists = scanner.find_types_derived_from("List`1")
        assert [item.name for item in lists] == ["Repository`1"]
        user = scanner.find_type_by_name_derived_from("User", "Object")
        assert user is not None
        assert [base.name for base in user.base_types] == ["Model", "Entity", "Object"]


def test_value_types_flagged(sample_artifact: Path) -> None:
    """Detect structs through their System.ValueType base."""
    with MetadataScanner(sample_artifact) as scanner:
        by_name = {item.name: item for item in scanner.types}
        assert by_name["ValueCommand"].is_value_type is True
        assert by_name["CreateCommand"].is_value_type is False
        assert by_name["NestedCommand"].full_name == "Sample.Commands.Outer+NestedCommand"
        assert "<Module>" not in by_name


LIBRARY_SOURCE = """
namespace Shared
{
    public class LibraryBase { }
    public interface ILibraryMarker { }
}
"""

CONSUMER_PROJECT = """<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFramework>net8.0</TargetFramework>
    <Nullable>disable</Nullable>
    <ImplicitUsings>disable</ImplicitUsings>
  </PropertyGroup>
  <ItemGroup>
    <ProjectReference Include="../Shared/Shared.csproj" />
  </ItemGroup>
</Project>
"""

CONSUMER_SOURCE = """
namespace Consumer
{
    public interface ILocal { }
    public class Standalone { }
    public class Local : ILocal { }
    public class FromLibrary : Shared.LibraryBase { }
    public class MarkedByLibrary : Shared.ILibraryMarker { }
}
"""


def test_types_with_missing_dependency_are_dropped(tmp_path: Path) -> None:
    """Drop only the types whose bases live in an unavailable assembly."""
    shared = tmp_path / "Shared"
    shared.mkdir()
    (shared / "Shared.csproj").write_text(PROJECT, encoding="utf-8")
    (shared / "Shared.cs").write_text(LIBRARY_SOURCE, encoding="utf-8")
    consumer = tmp_path / "Consumer"
    consumer.mkdir()
    (consumer / "Consumer.csproj").write_text(CONSUMER_PROJECT, encoding="utf-8")
    (consumer / "Consumer.cs").write_text(CONSUMER_SOURCE, encoding="utf-8")
    artifact = prepare_assembly_sync(consumer / "Consumer.csproj").artifact_path

    with MetadataScanner(artifact) as scanner:
        before = {item.name for item in scanner.types}
    assert {"FromLibrary", "MarkedByLibrary", "Standalone", "Local"} <= before

    (artifact.parent / "Shared.dll").unlink()
    with MetadataScanner(artifact) as scanner:
        after = {item.name for item in scanner.types}
        assert [item.name for item in scanner.find_types_implementing("ILocal")] == ["Local"]
    assert {"ILocal", "Standalone", "Local"} <= after
    assert after.isdisjoint({"FromLibrary", "MarkedByLibrary"})
    assert before - after == {"FromLibrary", "MarkedByLibrary"}
