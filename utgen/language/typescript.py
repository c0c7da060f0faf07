"""TypeScript / JavaScript support: tree-sitter analysis and jest execution."""

from __future__ import annotations

import asyncio
import json
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from tree_sitter import Node

from .base import (
    AnalyzedFile,
    ExportedUnit,
    LanguageService,
    NameMatchTypeResolver,
    TestRunResult,
    TypeDeclaration,
    TypeResolver,
)
from .filters import list_source_files
from .treesitter import get_parser, node_text
from ..errors import TestRunnerError

FUNCTION_VALUE_TYPES = {
    "arrow_function",
    "function_expression",
    "function",
    "generator_function",
}
FUNCTION_DECLARATION_TYPES = {"function_declaration", "generator_function_declaration"}
VARIABLE_DECLARATION_TYPES = {"lexical_declaration", "variable_declaration"}
TYPE_DECLARATION_TYPES = {
    "interface_declaration",
    "type_alias_declaration",
    "enum_declaration",
    "class_declaration",
    "abstract_class_declaration",
}
EXPORTABLE_TYPES = (
    FUNCTION_DECLARATION_TYPES
    | VARIABLE_DECLARATION_TYPES
    | TYPE_DECLARATION_TYPES
    | {"module"}
)

RESULTS_FILE = "jest-results.json"


def _declaration_of(export_node: Node) -> Optional[Node]:
    return export_node.child_by_field_name("declaration")


def _is_default_export(export_node: Node) -> bool:
    return any(child.type == "default" for child in export_node.children)


def _declarators(node: Node) -> List[Node]:
    return [child for child in node.named_children if child.type == "variable_declarator"]


def _is_require_binding(node: Node) -> bool:
    for declarator in _declarators(node):
        value = declarator.child_by_field_name("value")
        if value is None or value.type != "call_expression":
            continue
        if node_text(value.child_by_field_name("function")) == "require":
            return True
    return False


def _is_namespace_statement(node: Node) -> bool:
    return (
        node.type == "expression_statement"
        and bool(node.named_children)
        and node.named_children[0].type == "internal_module"
    )


class TypeScript(LanguageService):
    name = "typescript"
    test_framework = "jest"
    fence_label = "typescript"
    fence_labels = ("typescript", "ts", "javascript", "js")

    def __init__(
        self,
        test_suffix: str = "ut.test",
        runner_command: Sequence[str] = ("npx", "jest"),
        type_resolver: Optional[TypeResolver] = None,
    ):
        self.test_suffix = test_suffix
        self.runner_command = list(runner_command)
        self.type_resolver = type_resolver or NameMatchTypeResolver()
        self._scratch = tempfile.TemporaryDirectory(prefix="utgen-")

    @property
    def results_path(self) -> Path:
        return Path(self._scratch.name) / RESULTS_FILE

    def file_endings(self) -> List[str]:
        return [".ts", ".js"]

    def discover_files(self, test_dir: Path) -> List[Path]:
        return list_source_files(Path(test_dir), self.file_endings())

    # ===== Analysis =====

    def analyze_source_file(self, file_path: Path) -> AnalyzedFile:
        file_path = Path(file_path)
        root = self._parse(file_path).root_node
        analyzed = AnalyzedFile(path=file_path)
        declarations: List[TypeDeclaration] = []
        candidates: List[Tuple[str, str]] = []

        for node in root.named_children:
            if node.type == "import_statement":
                analyzed.import_statements.append(node_text(node))
            elif node.type == "export_statement":
                declaration = _declaration_of(node)
                if declaration is None:
                    continue
                if declaration.type in TYPE_DECLARATION_TYPES:
                    self._collect_type(declaration, node, declarations)
                elif _is_default_export(node):
                    continue
                else:
                    for name in self._function_names(declaration):
                        candidates.append((name, node_text(node)))
            elif node.type in TYPE_DECLARATION_TYPES:
                self._collect_type(node, node, declarations)
            elif node.type in VARIABLE_DECLARATION_TYPES and _is_require_binding(node):
                analyzed.import_statements.append(node_text(node))
            else:
                analyzed.skipped_units.extend(self._function_names(node))

        imports = tuple(analyzed.import_statements)
        for name, source_text in candidates:
            analyzed.exported_units.append(
                ExportedUnit(
                    name=name,
                    source_text=source_text,
                    referenced_types=self.type_resolver.resolve(source_text, declarations),
                    import_context=imports,
                )
            )
        return analyzed

    def export_all_declarations(self, file_path: Path) -> int:
        file_path = Path(file_path)
        content = file_path.read_bytes()
        root = self._parse(file_path, content).root_node
        positions = [
            node.start_byte
            for node in root.named_children
            if node.type in EXPORTABLE_TYPES or _is_namespace_statement(node)
        ]
        if not positions:
            return 0
        for position in reversed(positions):
            content = content[:position] + b"export " + content[position:]
        file_path.write_bytes(content)
        return len(positions)

    # ===== Test files =====

    def test_file_path(self, source_path: Path, unit_name: str) -> Path:
        return Path(source_path).parent / f"{unit_name}.{self.test_suffix}.ts"

    def import_path(self, source_path: Path) -> str:
        return f"./{Path(source_path).stem}"

    def write_candidate(self, test_file: Path, blocks: Sequence[str]) -> None:
        Path(test_file).write_text("\n\n".join(blocks), encoding="utf-8")

    async def run_tests(self, root_dir: Path, test_file: Path) -> TestRunResult:
        results_path = self.results_path
        results_path.unlink(missing_ok=True)
        # jest runs from root_dir, so relative paths would resolve twice.
        root_dir = Path(root_dir).resolve()
        test_file = Path(test_file).resolve()
        cmd = self.runner_command + [
            "--json",
            f"--outputFile={results_path}",
            f"--rootDir={root_dir}",
            str(test_file),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(root_dir),
            )
        except FileNotFoundError as exc:
            raise TestRunnerError(f"Command not found: {cmd[0]}") from exc
        except PermissionError as exc:
            raise TestRunnerError(f"Permission denied running {cmd[0]}: {exc}") from exc
        except OSError as exc:
            raise TestRunnerError(f"Could not start test runner: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        if process.returncode == 0:
            return TestRunResult(success=True, raw_results=stdout)
        return TestRunResult(success=False, raw_results=self._failure_payload(stdout, stderr))

    def cleanup(self) -> None:
        self._scratch.cleanup()

    # ===== Helpers =====

    def _parse(self, file_path: Path, content: Optional[bytes] = None):
        if content is None:
            content = file_path.read_bytes()
        grammar = "tsx" if file_path.suffix in (".tsx", ".jsx") else "typescript"
        return get_parser(grammar).parse(content)

    def _function_names(self, node: Node) -> List[str]:
        if node.type in FUNCTION_DECLARATION_TYPES:
            name = node.child_by_field_name("name")
            return [node_text(name)] if name is not None else []
        if node.type not in VARIABLE_DECLARATION_TYPES:
            return []
        names: List[str] = []
        for declarator in _declarators(node):
            name = declarator.child_by_field_name("name")
            value = declarator.child_by_field_name("value")
            if name is None or name.type != "identifier" or value is None:
                continue
            if value.type in FUNCTION_VALUE_TYPES:
                names.append(node_text(name))
        return names

    def _collect_type(
        self, declaration: Node, statement: Node, declarations: List[TypeDeclaration]
    ) -> None:
        name = node_text(declaration.child_by_field_name("name"))
        if not name or any(existing.name == name for existing in declarations):
            return
        declarations.append(TypeDeclaration(name=name, source_text=node_text(statement)))

    def _failure_payload(self, stdout: str, stderr: str) -> str:
        try:
            report = json.loads(self.results_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return stderr or stdout
        return json.dumps(report, indent=2)
