"""Extract declared test identifiers from a test-suite checkout."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import re
from typing import Iterator

from reconciliation.errors import ParseError

logger = logging.getLogger(__name__)

TEST_DECLARATION_PREFIX = 'test "'

_DECLARATION_RE = re.compile(r'^test "((?:[^"\\]|\\.)*)"')
_ESCAPE_RE = re.compile(r"\\(.)")


@dataclass(frozen=True)
class TestDeclaration:
    """One `test "<name>"` line found in a test-definition file."""

    __test__ = False

    name: str
    path: Path
    line_number: int


def _iter_files(root_dir: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root_dir):
        dirnames[:] = sorted(name for name in dirnames if name != ".git")
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def _parse_line(line: str, path: Path, line_number: int) -> str:
    match = _DECLARATION_RE.match(line)
    if match is None:
        raise ParseError(f"{path}:{line_number}: unterminated test declaration: {line.strip()}")
    name = _ESCAPE_RE.sub(r"\1", match.group(1))
    if not name.strip():
        raise ParseError(f"{path}:{line_number}: empty test name")
    return name


def _scan_file(path: Path) -> list[TestDeclaration]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"Unable to read test file {path}: {exc}") from exc

    declarations: list[TestDeclaration] = []
    for line_number, raw_line in enumerate(text.split("\n"), start=1):
        line = raw_line.rstrip("\r")
        if line.startswith(TEST_DECLARATION_PREFIX):
            declarations.append(
                TestDeclaration(name=_parse_line(line, path, line_number), path=path, line_number=line_number)
            )
    return declarations


def scan_test_declarations(root_dir: Path) -> list[TestDeclaration]:
    """Return every test declaration under root_dir in file-scan order."""
    root = Path(root_dir)
    if not root.is_dir():
        raise ParseError(f"Test directory does not exist: {root}")

    declarations: list[TestDeclaration] = []
    for path in _iter_files(root):
        declarations.extend(_scan_file(path))
    return declarations


def extract_identifiers(root_dir: Path) -> frozenset[str]:
    """Return the set of test identifiers declared under root_dir."""
    declarations = scan_test_declarations(root_dir)

    locations: dict[str, list[str]] = defaultdict(list)
    for declaration in declarations:
        locations[declaration.name].append(f"{declaration.path}:{declaration.line_number}")
    for name in sorted(locations):
        where = locations[name]
        if len(where) > 1:
            logger.warning("Test %r declared %d times: %s", name, len(where), ", ".join(where))

    logger.debug("Extracted %d declarations (%d distinct) from %s", len(declarations), len(locations), root_dir)
    return frozenset(locations)
