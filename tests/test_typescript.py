import json
import os
import sys
import tempfile
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from utgen.errors import TestRunnerError
from utgen.language.base import NameMatchTypeResolver, TypeDeclaration
from utgen.language.filters import list_source_files
from utgen.language.typescript import TypeScript

SAMPLE = """import { readFileSync } from "fs";
const path = require("path");

interface User {
  id: string;
}

interface User {
  name: string;
}

type Id = string;

enum Color {
  Red,
}

export function getUser(id: string): User {
  return { id, name: readFileSync(path.join(id)).toString() };
}

export const makeId = (n: number): Id => "id-" + n;

export const VERSION = "1.0";

export default function main() {}

export class UserService {}

function helper() {
  return 1;
}

const inner = () => helper();
"""

FAKE_JEST = """import json
import sys
from pathlib import Path

args = sys.argv[1:]
output = next(arg.split("=", 1)[1] for arg in args if arg.startswith("--outputFile="))
root = next(arg.split("=", 1)[1] for arg in args if arg.startswith("--rootDir="))
if not Path(root).is_dir() or not Path(args[-1]).is_file():
    sys.stderr.write("no tests found\\n")
    sys.exit(1)
body = Path(args[-1]).read_text()
if "CRASH" in body:
    sys.stderr.write("runner exploded\\n")
    sys.exit(1)
if "FAIL" in body:
    Path(output).write_text(json.dumps({"numFailedTests": 1, "success": False}))
    sys.exit(1)
Path(output).write_text(json.dumps({"numFailedTests": 0, "success": True}))
print("all good")
"""


class TestAnalyzeSourceFile(unittest.TestCase):
    def setUp(self):
        self.language = TypeScript()
        self.addCleanup(self.language.cleanup)

    def analyze(self, source: str, name: str = "sample.ts"):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / name
            path.write_text(source)
            return self.language.analyze_source_file(path)

    def test_exported_functions_become_units(self):
        analyzed = self.analyze(SAMPLE)
        self.assertEqual([u.name for u in analyzed.exported_units], ["getUser", "makeId"])
        self.assertEqual(analyzed.skipped_units, ["helper", "inner"])

    def test_unit_source_is_the_export_statement(self):
        analyzed = self.analyze(SAMPLE)
        make_id = analyzed.exported_units[1]
        self.assertEqual(make_id.source_text, 'export const makeId = (n: number): Id => "id-" + n;')

    def test_referenced_types_are_attached(self):
        analyzed = self.analyze(SAMPLE)
        get_user, make_id = analyzed.exported_units
        self.assertEqual([t.name for t in get_user.referenced_types], ["User"])
        self.assertIn("id: string;", get_user.referenced_types[0].source_text)
        self.assertEqual([t.name for t in make_id.referenced_types], ["Id"])

    def test_imports_and_requires_are_context(self):
        analyzed = self.analyze(SAMPLE)
        self.assertEqual(
            analyzed.import_statements,
            ['import { readFileSync } from "fs";', 'const path = require("path");'],
        )
        self.assertEqual(
            analyzed.exported_units[0].import_context, tuple(analyzed.import_statements)
        )

    def test_file_without_functions(self):
        analyzed = self.analyze("export const answer = 42;\n")
        self.assertEqual(analyzed.exported_units, [])
        self.assertEqual(analyzed.skipped_units, [])

    def test_javascript_source(self):
        analyzed = self.analyze(
            "export function greet(name) { return 'hi ' + name; }\n", name="greet.js"
        )
        self.assertEqual([u.name for u in analyzed.exported_units], ["greet"])


class TestNameMatchTypeResolver(unittest.TestCase):
    def test_matches_whole_words_only(self):
        declarations = [
            TypeDeclaration("Id", "type Id = string;"),
            TypeDeclaration("User", "interface User {}"),
        ]
        resolved = NameMatchTypeResolver().resolve("function makeId(u: UserRecord) {}", declarations)
        self.assertEqual(resolved, ())

    def test_keeps_declaration_order(self):
        declarations = [
            TypeDeclaration("A", "type A = 1;"),
            TypeDeclaration("B", "type B = 2;"),
        ]
        resolved = NameMatchTypeResolver().resolve("(b: B, a: A) => a", declarations)
        self.assertEqual([d.name for d in resolved], ["A", "B"])


class TestExportAllDeclarations(unittest.TestCase):
    def test_prefixes_top_level_declarations(self):
        language = TypeScript()
        self.addCleanup(language.cleanup)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "mod.ts"
            path.write_text(
                'import x from "y";\n'
                "function a() {}\n"
                "const b = 1;\n"
                "interface C {}\n"
                "export function d() {}\n"
            )

            changed = language.export_all_declarations(path)
            content = path.read_text()
            second = language.export_all_declarations(path)
            unchanged = path.read_text()

        self.assertEqual(changed, 3)
        self.assertEqual(
            content,
            'import x from "y";\n'
            "export function a() {}\n"
            "export const b = 1;\n"
            "export interface C {}\n"
            "export function d() {}\n",
        )
        self.assertEqual(second, 0)
        self.assertEqual(unchanged, content)

    def test_exported_after_transform(self):
        language = TypeScript()
        self.addCleanup(language.cleanup)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "mod.ts"
            path.write_text("function hidden() { return 1; }\n")
            language.export_all_declarations(path)
            analyzed = language.analyze_source_file(path)
        self.assertEqual([u.name for u in analyzed.exported_units], ["hidden"])


class TestTestFiles(unittest.TestCase):
    def setUp(self):
        self.language = TypeScript()
        self.addCleanup(self.language.cleanup)

    def test_paths(self):
        source = Path("/repo/src/math.ts")
        self.assertEqual(
            self.language.test_file_path(source, "add"), Path("/repo/src/add.ut.test.ts")
        )
        self.assertEqual(self.language.import_path(source), "./math")

    def test_write_candidate_joins_blocks(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            test_file = Path(tmpdir) / "add.ut.test.ts"
            self.language.write_candidate(test_file, ["test('a', () => {});", "test('b', () => {});"])
            self.assertEqual(
                test_file.read_text(), "test('a', () => {});\n\ntest('b', () => {});"
            )
            self.language.write_candidate(test_file, [])
            self.assertEqual(test_file.read_text(), "")

    def test_cleanup_removes_scratch_directory(self):
        language = TypeScript()
        scratch = language.results_path.parent
        self.assertTrue(scratch.exists())
        language.cleanup()
        self.assertFalse(scratch.exists())


class TestDiscovery(unittest.TestCase):
    def test_depth_first_sorted_and_filtered(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            for rel in [
                "a/b.ts",
                "a/b.test.ts",
                "a/sub/c.js",
                "c.d.ts",
                "m.spec.ts",
                "node_modules/x.ts",
                ".hidden/h.ts",
                "readme.md",
                "z.js",
            ]:
                path = root / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text("export {};\n")

            language = TypeScript()
            self.addCleanup(language.cleanup)
            files = language.discover_files(root)
            single = list_source_files(root / "z.js", language.file_endings())

        self.assertEqual(
            [f.relative_to(root).as_posix() for f in files], ["a/b.ts", "a/sub/c.js", "z.js"]
        )
        self.assertEqual(single, [root / "z.js"])

    def test_missing_directory_yields_nothing(self):
        self.assertEqual(list_source_files(Path("/nonexistent/utgen"), [".ts"]), [])


class TestRunTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        script = self.root / "fake_jest.py"
        script.write_text(FAKE_JEST)
        self.language = TypeScript(runner_command=[sys.executable, str(script)])
        self.test_file = self.root / "add.ut.test.ts"

    async def asyncTearDown(self):
        self.language.cleanup()
        self._tmp.cleanup()

    async def test_passing_run(self):
        self.test_file.write_text("test('ok', () => {});")
        result = await self.language.run_tests(self.root, self.test_file)
        self.assertTrue(result.success)
        self.assertIn("all good", result.raw_results)

    async def test_failing_run_returns_json_report(self):
        self.test_file.write_text("FAIL")
        result = await self.language.run_tests(self.root, self.test_file)
        self.assertFalse(result.success)
        self.assertEqual(json.loads(result.raw_results), {"numFailedTests": 1, "success": False})
        self.assertIn('\n  "numFailedTests"', result.raw_results)

    async def test_stale_report_is_not_reused(self):
        self.test_file.write_text("FAIL")
        await self.language.run_tests(self.root, self.test_file)
        self.test_file.write_text("CRASH")
        result = await self.language.run_tests(self.root, self.test_file)
        self.assertFalse(result.success)
        self.assertEqual(result.raw_results, "runner exploded\n")

    async def test_missing_runner_raises(self):
        language = TypeScript(runner_command=["utgen-no-such-runner"])
        self.addCleanup(language.cleanup)
        self.test_file.write_text("test('ok', () => {});")
        with self.assertRaises(TestRunnerError):
            await language.run_tests(self.root, self.test_file)

    async def test_relative_paths_resolve_from_working_directory(self):
        project = self.root / "proj"
        (project / "src").mkdir(parents=True)
        (project / "src" / "add.ut.test.ts").write_text("test('ok', () => {});")
        previous = os.getcwd()
        os.chdir(self.root)
        try:
            result = await self.language.run_tests(
                Path("proj"), Path("proj/src/add.ut.test.ts")
            )
        finally:
            os.chdir(previous)

        self.assertTrue(result.success, result.raw_results)
        self.assertIn("all good", result.raw_results)


if __name__ == "__main__":
    unittest.main()
