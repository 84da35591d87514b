"""Tests for the ``scripts/create_user.py`` seeding helper."""

from __future__ import annotations

import contextlib
import importlib.util
import io
import sys
import tempfile
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SCRIPT_PATH = ROOT / "scripts" / "create_user.py"


class CreateUserScriptTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        base = Path(self._tempdir.name)
        self.database_path = base / "directory.sqlite3"
        self.config_path = base / "settings.yaml"
        self.config_path.write_text(f"database_path: {self.database_path}\n", encoding="utf-8")

        # The script must run through the core alone, without the HTTP stack.
        self._saved_modules = {
            name: module
            for name, module in sys.modules.items()
            if name in ("fastapi", "userdirectory") or name.startswith(("fastapi.", "userdirectory."))
        }
        for name in self._saved_modules:
            sys.modules.pop(name)
        sys.modules["fastapi"] = None  # type: ignore[assignment]

    def tearDown(self) -> None:
        for name in [m for m in sys.modules if m == "fastapi" or m.startswith(("fastapi.", "userdirectory"))]:
            sys.modules.pop(name, None)
        sys.modules.update(self._saved_modules)
        self._tempdir.cleanup()

    def _load_script(self):
        spec = importlib.util.spec_from_file_location("create_user_script", SCRIPT_PATH)
        module = importlib.util.module_from_spec(spec)
        assert spec.loader is not None
        spec.loader.exec_module(module)
        return module

    def _run(self, *argv: str):
        script = self._load_script()
        stdout, stderr = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            code = script.main([*argv, "--config", str(self.config_path)])
        return code, stdout.getvalue(), stderr.getvalue()

    def test_creates_normalised_user_without_http_stack(self) -> None:
        code, out, err = self._run("Ann", "Ann@X.com", "30", "--role", "admin")

        self.assertEqual(code, 0, err)
        self.assertIn("Ann <ann@x.com> (admin)", out)
        self.assertTrue(self.database_path.exists())
        self.assertNotIn("userdirectory.rest", sys.modules)
        self.assertNotIn("userdirectory.soap", sys.modules)

    def test_reports_duplicate_email(self) -> None:
        self.assertEqual(self._run("Ann", "ann@x.com", "30")[0], 0)

        code, out, err = self._run("Other", "ANN@x.com", "41")

        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("already exists", err)

    def test_reports_validation_failure(self) -> None:
        code, _, err = self._run("Ann", "ann@x.com", "0")

        self.assertEqual(code, 1)
        self.assertIn("Age must be at least 1", err)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
