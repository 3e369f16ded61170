"""Queries about crates answered by running ``cargo metadata`` and reading manifests."""

from __future__ import annotations

import json
import re
import subprocess
import tomllib
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from crateval.exceptions import EvalError

CargoCommand = Callable[[str], Sequence[str]]

DUMMY_PACKAGE_NAME = "crateval_dummy_validate_dep"

_VALIDATE_MANIFEST = """
[package]
name = "{package}"
version = "0.0.1"
edition = "2021"

[lib]
path = "lib.rs"

[dependencies]
{dep} = {dep_config}
"""

_NO_LIB_RE = re.compile(
    r"ignoring invalid dependency `(.*)` which is missing a lib target"
)
_IGNORED_LINES_RE = re.compile(
    r"required by package `" + re.escape(DUMMY_PACKAGE_NAME) + r".*"
)
_PRIMARY_ERROR_RE = re.compile(r"(.*) as a dependency of package `[^`]*`")

_OFFLINE_TIP = "\nTip: Enable offline mode with `:offline 1`"


def _default_cargo_command(subcommand: str) -> list[str]:
    return ["cargo", subcommand]


def _run_cargo(
    crate_dir: str | Path,
    cargo_command: CargoCommand | None,
    subcommand: str,
    *args: str,
) -> subprocess.CompletedProcess[bytes]:
    argv = [*(cargo_command or _default_cargo_command)(subcommand), *args]
    return subprocess.run(argv, cwd=crate_dir, capture_output=True, check=False)


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise EvalError(str(err)) from err


def _lines(text: str) -> list[str]:
    pieces = text.split("\n")
    if pieces[-1] == "":
        pieces.pop()
    return [piece[:-1] if piece.endswith("\r") else piece for piece in pieces]


def _is_index_fetch_failure(line: str) -> bool:
    return "failed to fetch `" in line and "crates.io-index`" in line


def get_library_names(
    crate_dir: str | Path, cargo_command: CargoCommand | None = None
) -> list[str]:
    """Library names of the direct dependencies of the crate in ``crate_dir``."""
    try:
        output = _run_cargo(
            crate_dir, cargo_command, "metadata", "--format-version", "1"
        )
    except OSError as err:
        raise EvalError(f"Error running cargo metadata: {err}") from err
    if output.returncode == 0:
        return library_names_from_metadata(_decode(output.stdout))
    raise EvalError(
        "cargo metadata failed with output:\n"
        + _decode(output.stdout)
        + _decode(output.stderr)
    )


def validate_dep(
    dep: str,
    dep_config: str,
    crate_dir: str | Path,
    cargo_command: CargoCommand | None = None,
) -> None:
    """Check that ``dep = dep_config`` resolves; raise EvalError explaining why not."""
    manifest = _VALIDATE_MANIFEST.format(
        package=DUMMY_PACKAGE_NAME, dep=dep, dep_config=dep_config
    )
    try:
        (Path(crate_dir) / "Cargo.toml").write_text(manifest, encoding="utf-8")
        output = _run_cargo(crate_dir, cargo_command, "metadata", "--format-version=1")
    except OSError as err:
        raise EvalError(str(err)) from err
    stderr = output.stderr.decode("utf-8", errors="replace")
    if output.returncode == 0:
        match = _NO_LIB_RE.search(stderr)
        if match is not None:
            raise EvalError(f"Dependency `{match.group(1)}` is missing a lib target")
        return

    message: list[str] = []
    suggest_offline_mode = False
    for line in _lines(stderr):
        primary = _PRIMARY_ERROR_RE.search(line)
        if primary is not None:
            message.append(primary.group(1))
        elif _IGNORED_LINES_RE.search(line) is None:
            message.append(line)
        if _is_index_fetch_failure(line):
            suggest_offline_mode = True
    if suggest_offline_mode:
        message.append(_OFFLINE_TIP)
    raise EvalError("\n".join(message))


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def library_names_from_metadata(metadata: str) -> list[str]:
    """Library names of the first workspace member's direct dependencies.

    Hyphens in library names are replaced by underscores.
    """
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError as err:
        raise EvalError(str(err)) from err
    if not isinstance(parsed, dict):
        return []
    packages = parsed.get("packages")
    members = parsed.get("workspace_members")
    main_crate_id = (
        _str_or_none(members[0]) if isinstance(members, list) and members else None
    )
    if not isinstance(packages, list) or main_crate_id is None:
        return []

    direct_dependencies: list[str] = []
    library_by_crate: dict[str, str] = {}
    for package in packages:
        if not isinstance(package, dict):
            continue
        package_name = _str_or_none(package.get("name"))
        package_id = _str_or_none(package.get("id"))
        if package_name is None or package_id is None:
            continue
        if package_id == main_crate_id:
            dependencies = package.get("dependencies")
            if isinstance(dependencies, list):
                for dependency in dependencies:
                    if isinstance(dependency, dict):
                        name = _str_or_none(dependency.get("name"))
                        if name is not None:
                            direct_dependencies.append(name)
        targets = package.get("targets")
        if not isinstance(targets, list):
            continue
        for target in targets:
            if not isinstance(target, dict):
                continue
            kinds = target.get("kind")
            if isinstance(kinds, list) and "lib" in kinds:
                target_name = _str_or_none(target.get("name"))
                if target_name is not None:
                    library_by_crate[package_name] = target_name

    return [
        library_by_crate[name].replace("-", "_")
        for name in direct_dependencies
        if name in library_by_crate
    ]


def _parse_error(message: str) -> EvalError:
    return EvalError(f"Parse error in Cargo.toml: {message}")


def parse_crate_name(path: str | Path) -> str:
    """Name of the package whose ``Cargo.toml`` is in directory ``path``."""
    content = (Path(path) / "Cargo.toml").read_text(encoding="utf-8")
    try:
        manifest = tomllib.loads(content)
    except tomllib.TOMLDecodeError as err:
        raise EvalError(f"Can't parse Cargo.toml: {err}") from err

    if "package" in manifest:
        package = manifest["package"]
        if not isinstance(package, dict):
            raise _parse_error("expected 'package' to be a table")
        if "name" not in package:
            raise _parse_error("no 'name' in package")
        name = package["name"]
        if not isinstance(name, str):
            raise _parse_error("expected 'name' to be a string")
        return name
    if "workspace" in manifest:
        raise EvalError("Workspaces are not supported")
    raise EvalError("Unexpected Cargo.toml format: not package or workspace")