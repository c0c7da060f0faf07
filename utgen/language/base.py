"""Language service interfaces and the data they exchange."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple


@dataclass(frozen=True)
class TypeDeclaration:
    name: str
    source_text: str


@dataclass(frozen=True)
class ExportedUnit:
    name: str
    source_text: str
    referenced_types: Tuple[TypeDeclaration, ...] = ()
    import_context: Tuple[str, ...] = ()


@dataclass
class AnalyzedFile:
    path: Path
    import_statements: List[str] = field(default_factory=list)
    exported_units: List[ExportedUnit] = field(default_factory=list)
    skipped_units: List[str] = field(default_factory=list)


@dataclass
class TestRunResult:
    __test__ = False

    success: bool
    raw_results: str


class TypeResolver(ABC):
    @abstractmethod
    def resolve(
        self, unit_source: str, declarations: Sequence[TypeDeclaration]
    ) -> Tuple[TypeDeclaration, ...]:
        """Return the declarations the unit refers to, in declaration order."""


class NameMatchTypeResolver(TypeResolver):
    """Attaches a type when its name appears as a whole word in the unit source."""

    def resolve(
        self, unit_source: str, declarations: Sequence[TypeDeclaration]
    ) -> Tuple[TypeDeclaration, ...]:
        matched: List[TypeDeclaration] = []
        seen = set()
        for declaration in declarations:
            if declaration.name in seen:
                continue
            if re.search(rf"(?<![\w$]){re.escape(declaration.name)}(?![\w$])", unit_source):
                matched.append(declaration)
                seen.add(declaration.name)
        return tuple(matched)


class LanguageService(ABC):
    name = ""
    test_framework = ""
    fence_label = ""
    fence_labels: Tuple[str, ...] = ()

    @abstractmethod
    def file_endings(self) -> List[str]:
        ...

    @abstractmethod
    def discover_files(self, test_dir: Path) -> List[Path]:
        """Source files under test_dir in depth-first directory-listing order."""

    @abstractmethod
    def analyze_source_file(self, file_path: Path) -> AnalyzedFile:
        ...

    @abstractmethod
    def export_all_declarations(self, file_path: Path) -> int:
        """Export every top-level declaration in place; return how many changed."""

    @abstractmethod
    def test_file_path(self, source_path: Path, unit_name: str) -> Path:
        ...

    @abstractmethod
    def import_path(self, source_path: Path) -> str:
        """Module specifier a test file next to source_path uses to import it."""

    @abstractmethod
    def write_candidate(self, test_file: Path, blocks: Sequence[str]) -> None:
        ...

    @abstractmethod
    async def run_tests(self, root_dir: Path, test_file: Path) -> TestRunResult:
        ...

    @abstractmethod
    def cleanup(self) -> None:
        ...
