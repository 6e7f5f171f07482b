"""Dependency resolution for loadable code units.

A unit is a JavaScript file that declares what it provides and requires
with Closure Library calls:

    goog.provide('weasel.repl');
    goog.require('clojure.browser.net');

Units live at two levels. Compiled source modules sit in a build output
directory; the underlying scripts they build on (Closure Library, foreign
libs) sit under the source root. ``transitive_deps`` follows "requires"
edges through the modules first and then through the scripts they pull in.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Protocol
from urllib.parse import urlparse
from urllib.request import url2pathname

from weasel_repl.errors import DependencyError

logger = logging.getLogger(__name__)

_PROVIDE_RE = re.compile(r"""goog\.(?:provide|module)\(\s*['"]([\w.$]+)['"]\s*\)""")
_REQUIRE_RE = re.compile(r"""goog\.require\(\s*['"]([\w.$]+)['"]\s*\)""")


class UnitKind(str, Enum):
    """Level a unit was discovered at."""

    MODULE = "module"
    SCRIPT = "script"


@dataclass(frozen=True)
class Unit:
    """A loadable file and the names it provides and requires."""

    path: Path
    provides: tuple[str, ...]
    requires: tuple[str, ...]
    kind: UnitKind = UnitKind.SCRIPT


class DependencyResolver(Protocol):
    """What the environment needs from a dependency resolver."""

    def analyze_source(self, root: str | Path) -> None: ...

    def transitive_deps(
        self, names: Iterable[str], build_options: dict[str, Any] | None = None
    ) -> set[str]: ...

    def read_source(self, url: str | Path) -> str: ...


def parse_unit(path: Path, kind: UnitKind = UnitKind.SCRIPT) -> Unit | None:
    """Read the provide/require declarations of one file.

    Returns None for files that provide nothing.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Skipping unreadable file %s: %s", path, e)
        return None

    provides = tuple(dict.fromkeys(_PROVIDE_RE.findall(text)))
    if not provides:
        return None
    requires = tuple(dict.fromkeys(_REQUIRE_RE.findall(text)))
    return Unit(path=path, provides=provides, requires=requires, kind=kind)


def scan_units(root: Path, kind: UnitKind = UnitKind.SCRIPT) -> list[Unit]:
    """Collect every unit declared in ``.js`` files below ``root``."""
    units = []
    for path in sorted(root.rglob("*.js")):
        unit = parse_unit(path, kind)
        if unit is not None:
            units.append(unit)
    return units


class DependencyIndex:
    """Closure-style dependency index over scanned ``.js`` files."""

    def __init__(self) -> None:
        self._modules: dict[str, Unit] = {}
        self._scripts: dict[str, Unit] = {}
        self._scanned: set[tuple[Path, UnitKind]] = set()

    def add_units(self, units: Iterable[Unit]) -> None:
        """Register units directly, routed by their kind."""
        for unit in units:
            index = self._modules if unit.kind == UnitKind.MODULE else self._scripts
            for name in unit.provides:
                index[name] = unit

    def _scan(self, root: Path, kind: UnitKind) -> None:
        key = (root.resolve(), kind)
        if key in self._scanned:
            return
        self._scanned.add(key)
        if not root.is_dir():
            logger.debug("No %s directory at %s", kind.value, root)
            return
        units = scan_units(root, kind)
        self.add_units(units)
        logger.info("Indexed %d %ss under %s", len(units), kind.value, root)

    def analyze_source(self, root: str | Path) -> None:
        """Index the scripts under the source root. Repeated calls are no-ops."""
        root = Path(root)
        if not root.is_dir():
            logger.warning("Source root %s does not exist, nothing to analyze", root)
        self._scan(root, UnitKind.SCRIPT)

    @staticmethod
    def _closure(names: Iterable[str], index: dict[str, Unit]) -> set[str]:
        """Names reachable from ``names`` through ``index``.

        Names missing from the index are kept but not followed.
        """
        seen: set[str] = set()
        stack = list(names)
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            unit = index.get(name)
            if unit is None:
                continue
            stack.extend(unit.provides)
            stack.extend(unit.requires)
        return seen

    def transitive_deps(
        self, names: Iterable[str], build_options: dict[str, Any] | None = None
    ) -> set[str]:
        """Flattened set of every name provided or required, transitively.

        Build options ``output_dir`` (compiled modules) and ``source_root``
        (scripts) are scanned before resolving, once each.
        """
        options = build_options or {}
        if options.get("output_dir"):
            self._scan(Path(options["output_dir"]), UnitKind.MODULE)
        if options.get("source_root"):
            self._scan(Path(options["source_root"]), UnitKind.SCRIPT)

        module_deps = self._closure(names, self._modules)
        script_deps = self._closure(module_deps, self._scripts)
        result = module_deps | script_deps
        result.discard("")
        return result

    def read_source(self, url: str | Path) -> str:
        """Read the full text of a unit from a path or ``file://`` URL."""
        path = _url_to_path(url)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DependencyError(f"Cannot read {url}: {e}") from e


def _url_to_path(url: str | Path) -> Path:
    if isinstance(url, Path):
        return url
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    # A one-letter scheme is a Windows drive, not a URL.
    if parsed.scheme == "" or len(parsed.scheme) == 1:
        return Path(url)
    raise DependencyError(f"Unsupported source URL scheme: {parsed.scheme!r}")
