"""Unit tests for the type_checker module."""
import subprocess
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from src.type_checker import TypeChecker, parse_diagnostics

TSC_OUTPUT = """\
src/cli/cmd/tui/routes/session/footer.tsx(12,7): error TS1002: Unterminated string literal.
src/cli/cmd/tui/app.tsx(40,3): error TS2322: Type 'string' is not assignable to type 'number'.
error TS5083: Cannot read file 'tsconfig.base.json'.
Found 3 errors.
"""


class TestParseDiagnostics(unittest.TestCase):

    def test_counts_errors_and_extracts_positions(self):
        result = parse_diagnostics(TSC_OUTPUT)

        self.assertEqual(result.error_count, 3)
        self.assertEqual(len(result.diagnostics), 2)
        first = result.diagnostics[0]
        self.assertEqual((first.file, first.line, first.column), ("footer.tsx", 12, 7))
        self.assertEqual(first.message, "Unterminated string literal.")
        self.assertFalse(result.passed)

    def test_clean_output(self):
        result = parse_diagnostics("")
        self.assertEqual(result.error_count, 0)
        self.assertTrue(result.passed)


class TestTypeChecker(unittest.TestCase):

    def setUp(self):
        self.config = SimpleNamespace(type_checker="/opt/tsc", package_root="/src/packages/opencode",
                                      type_check_timeout=60.0)

    @patch("src.type_checker.os.path.isdir", return_value=True)
    @patch("src.type_checker.subprocess.run")
    def test_runs_in_package_directory(self, mock_run, _):
        mock_run.return_value = SimpleNamespace(returncode=2, stdout=TSC_OUTPUT, stderr="")

        result = TypeChecker(self.config).run()

        self.assertEqual(result.error_count, 3)
        args, kwargs = mock_run.call_args
        self.assertEqual(args[0], ["/opt/tsc", "--noEmit", "--skipLibCheck"])
        self.assertEqual(kwargs["cwd"], "/src/packages/opencode")
        self.assertEqual(kwargs["timeout"], 60.0)

    @patch("src.type_checker.os.path.isdir", return_value=True)
    @patch("src.type_checker.subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="tsc", timeout=1))
    def test_timeout(self, *_):
        result = TypeChecker(self.config, timeout=1).run()
        self.assertTrue(result.timed_out)
        self.assertFalse(result.passed)

    @patch("src.type_checker.os.path.isdir", return_value=True)
    @patch("src.type_checker.subprocess.run", side_effect=FileNotFoundError("tsc"))
    def test_not_installed(self, *_):
        result = TypeChecker(self.config).run()
        self.assertTrue(result.not_installed)

    @patch("src.type_checker.os.path.isdir", return_value=False)
    @patch("src.type_checker.subprocess.run")
    def test_missing_package_directory(self, mock_run, _):
        result = TypeChecker(self.config).run()
        self.assertTrue(result.not_installed)
        mock_run.assert_not_called()
