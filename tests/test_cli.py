import io
import json
import logging
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from tests import _bootstrap  # noqa: F401
from basilpp import main


class CliTests(unittest.TestCase):
    def _run_main(self, argv: list[str], *, stdin_text: str = "") -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(argv, stdin=io.StringIO(stdin_text))
        return code, stdout.getvalue(), stderr.getvalue()

    def test_main_success(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "main.bas"
            path.write_text('#define GREETING "hi"\n#if GREETING == "hi"\nPRINT "hi"\n#endif\n', encoding="utf-8")
            code, stdout, stderr = self._run_main([str(path)])
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertEqual(stdout, 'PRINT "hi"\n')

    def test_main_stdin(self) -> None:
        code, stdout, stderr = self._run_main(["-"], stdin_text="#if __file__ == \"<stdin>\"\nok\n#endif\n")
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertEqual(stdout, "ok\n")

    def test_main_defines(self) -> None:
        source = "#if LEVEL == 2 && defined(FAST) && NAME == \"x y\"\nyes\n#endif\n"
        code, stdout, _ = self._run_main(
            ["-", "-D", "LEVEL=2", "--D", "FAST", "-DNAME='x y'"],
            stdin_text=source,
        )
        self.assertEqual(code, 0)
        self.assertEqual(stdout, "yes\n")

    def test_main_include_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "vendor").mkdir()
            (root / "vendor" / "dep.bas").write_text("DEP\n", encoding="utf-8")
            path = root / "main.bas"
            path.write_text("#include dep.bas\n", encoding="utf-8")
            code, stdout, stderr = self._run_main([str(path), "-I", str(root / "vendor")])
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertEqual(stdout, "DEP\n")

    def test_main_dump_include_trace_and_deps(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            (root / "inc.bas").write_text("X = 1\n", encoding="utf-8")
            path = root / "main.bas"
            path.write_text('#include "inc.bas"\n#include inc.bas\n', encoding="utf-8")
            code, stdout, stderr = self._run_main([str(path), "--dump-include-trace", "--dump-deps"])
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        lines = stdout.splitlines()
        self.assertEqual(lines[0], str(root / "inc.bas"))
        self.assertIn("main.bas:1: #include", lines[1])
        self.assertTrue(lines[2].endswith("(skipped)"))
        self.assertNotIn("X = 1", stdout)

    def test_main_dump_macro_table(self) -> None:
        code, stdout, stderr = self._run_main(["-", "--dump-macro-table"], stdin_text="#define A 1\n#define B\n")
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertEqual(stdout, "A=1\nB=true\n")

    def test_main_output_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "flat.bas"
            code, stdout, stderr = self._run_main(["-", "-o", str(out)], stdin_text="PRINT 1\n")
            self.assertEqual(out.read_text(encoding="utf-8"), "PRINT 1\n")
        self.assertEqual(code, 0)
        self.assertEqual(stdout, "")
        self.assertEqual(stderr, "")

    def test_main_human_diagnostic(self) -> None:
        code, stdout, stderr = self._run_main(["-"], stdin_text="#undef __os__\n")
        self.assertEqual(code, 1)
        self.assertEqual(stdout, "")
        self.assertEqual(stderr, "<stdin>:1: preprocess: cannot undefine built-in macro __os__\n")

    def test_main_json_diagnostic(self) -> None:
        code, _, stderr = self._run_main(["-", "--diag-format", "json"], stdin_text="x\n#if 1 +\n#endif\n")
        self.assertEqual(code, 1)
        payload = json.loads(stderr)
        self.assertEqual(payload["stage"], "preprocess")
        self.assertEqual(payload["filename"], "<stdin>")
        self.assertEqual(payload["line"], 2)
        self.assertEqual(payload["code"], "BASIL-PP-0103")
        self.assertIn("invalid #if expression", payload["message"])

    def test_main_no_embedded_includes(self) -> None:
        source = "#include <std/platform.bas>\n"
        code, stdout, _ = self._run_main(["-"], stdin_text=source)
        self.assertEqual(code, 0)
        self.assertIn("CONST PATH_SEP$", stdout)
        code, stdout, stderr = self._run_main(["-", "--no-embedded-includes"], stdin_text=source)
        self.assertEqual(code, 1)
        self.assertEqual(stdout, "")
        self.assertIn('error: include not found: "std/platform.bas"', stderr)

    def test_main_list_embedded(self) -> None:
        code, stdout, stderr = self._run_main(["--list-embedded"])
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertTrue(stdout.startswith("Embedded files:\n"))
        self.assertIn("  std/platform.bas\n", stdout)

    def test_main_list_embedded_top_level_dirs(self) -> None:
        code, stdout, _ = self._run_main(["--list-embedded"])
        self.assertEqual(code, 0)
        self.assertTrue(stdout.endswith("\nTop-level dirs: std\n"))

    def _run_in_directory(self, directory: str, argv: list[str]) -> tuple[int, str, str]:
        previous = os.getcwd()
        os.chdir(directory)
        try:
            return self._run_main(argv)
        finally:
            os.chdir(previous)

    def test_main_make_single_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            code, stdout, stderr = self._run_in_directory(tmp, ["--make", "std/platform"])
            written = Path(tmp) / "platform.bas"
            self.assertTrue(written.is_file())
            self.assertIn(b"#if __os__", written.read_bytes())
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertTrue(stdout.startswith("Wrote file: "))
        self.assertTrue(stdout.rstrip().endswith("platform.bas"))

    def test_main_make_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            code, stdout, stderr = self._run_in_directory(tmp, ["--make", "std"])
            self.assertTrue((Path(tmp) / "std" / "platform.bas").is_file())
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertEqual(stdout, "Wrote directory: std/\n")

    def test_main_make_rejects_unsafe_and_unknown_targets(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            code, stdout, stderr = self._run_in_directory(tmp, ["--make", "../escape"])
            self.assertEqual(code, 1)
            self.assertEqual(stdout, "")
            self.assertIn("refusing unsafe target: ../escape", stderr)
            code, _, stderr = self._run_in_directory(tmp, ["--make", "nothing/here"])
            self.assertEqual(code, 1)
            self.assertIn("no embedded file or dir named 'nothing/here'", stderr)
            self.assertEqual(list(Path(tmp).iterdir()), [])

    def test_main_attached_long_define(self) -> None:
        source = "#if LEVEL == 2 && defined(FAST)\nyes\n#endif\n"
        code, stdout, stderr = self._run_main(["-", "--DLEVEL=2", "--D=FAST"], stdin_text=source)
        self.assertEqual(code, 0)
        self.assertEqual(stderr, "")
        self.assertEqual(stdout, "yes\n")

    def test_main_missing_input_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            code, _, stderr = self._run_main([str(Path(tmp) / "missing.bas")])
        self.assertEqual(code, 1)
        self.assertIn("basilpp: I/O error:", stderr)

    def test_main_usage_errors(self) -> None:
        code, _, stderr = self._run_main([])
        self.assertEqual(code, 2)
        self.assertIn("input path is required", stderr)
        code, _, stderr = self._run_main(["-", "-D", "1BAD=2"])
        self.assertEqual(code, 2)
        self.assertIn("invalid option", stderr)
        code, _, _ = self._run_main(["-", "--diag-format", "xml"])
        self.assertEqual(code, 2)

    def test_main_debug_env_enables_logging(self) -> None:
        with patch.dict(os.environ, {"BASIL_DEBUG": "1"}, clear=False):
            with patch("basilpp.logging.basicConfig") as basic_config:
                code, _, _ = self._run_main(["-"], stdin_text="x\n")
        self.assertEqual(code, 0)
        basic_config.assert_called_once()
        self.assertEqual(basic_config.call_args.kwargs["level"], logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
