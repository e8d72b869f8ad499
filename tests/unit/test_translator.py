"""Unit tests for the translator module."""
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import MagicMock

from src.app_config import AppConfig
from src.config_store import ConfigStore, TranslationRecord
from src.translation_backend import BatchTranslation, TranslationBackend
from src.translator import Translator, TranslationRunResult, build_context
from src.vcs import GitClient, GitError


class PrefixBackend(TranslationBackend):

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.requests = []

    async def translate_batch(self, texts, context):
        self.requests.append((list(texts), context))
        result = BatchTranslation()
        for text in texts:
            if text in self.fail:
                result.failures[text] = "simulated failure"
            else:
                result.translations[text] = f"译:{text}"
        return result


class TranslatorTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.config = AppConfig(
            project_root=self.tmp_dir,
            source_root=os.path.join(self.tmp_dir, "opencode"),
            config_root=os.path.join(self.tmp_dir, "opencode-i18n"),
            critical_files=[],
        )
        os.makedirs(self.config.package_src_root)
        os.makedirs(self.config.config_root)
        self.backend = PrefixBackend()
        self.vcs = MagicMock(spec=GitClient)
        self.vcs.changed_since.return_value = []
        self.vcs.uncommitted_changes.return_value = []
        self.translator = Translator(self.config, backend=self.backend, vcs=self.vcs)

    def tearDown(self):
        shutil.rmtree(self.tmp_dir)

    def write_source(self, relative_path, content):
        path = self.config.resolve_source_file(relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def write_record(self, category, file_name, file, replacements):
        return ConfigStore(self.config).save(TranslationRecord(category, file_name, file, replacements))

    def read_record(self, category, file_name):
        with open(os.path.join(self.config.config_root, category, file_name), 'r', encoding='utf-8') as f:
            return json.load(f)

    def snapshot_config_root(self):
        snapshot = {}
        for dirpath, _, filenames in os.walk(self.config.config_root):
            for filename in filenames:
                path = os.path.join(dirpath, filename)
                with open(path, 'r', encoding='utf-8') as f:
                    snapshot[path] = f.read()
        return snapshot


class TestScanAndTranslate(TranslatorTestCase):

    async def test_translations_are_merged_and_saved(self):
        self.write_source("src/ui/home.tsx", "<text>Welcome back</text>\n<text>Quit now</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Welcome back": "欢迎回来"})

        result = await self.translator.scan_and_translate()

        self.assertTrue(result.success)
        self.assertEqual(result.translated, 1)
        self.assertEqual(result.files, ["src/ui/home.tsx"])
        self.assertEqual(self.read_record("ui", "home.json")["replacements"],
                         {"Welcome back": "欢迎回来", "Quit now": "译:Quit now"})

    async def test_context_contains_file_and_existing_translations(self):
        self.write_source("src/ui/home.tsx", "<text>Welcome back</text>\n<text>Quit now</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Welcome back": "欢迎回来"})

        await self.translator.scan_and_translate()

        texts, context = self.backend.requests[0]
        self.assertEqual(texts, ["Quit now"])
        self.assertIn("src/ui/home.tsx", context)
        self.assertIn('"Welcome back" => "欢迎回来"', context)

    async def test_partial_failure_keeps_successes(self):
        self.backend.fail = {"Quit now"}
        self.write_source("src/ui/home.tsx", "<text>Open settings</text>\n<text>Quit now</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Other": "其他"})

        result = await self.translator.scan_and_translate()

        self.assertFalse(result.success)
        self.assertEqual(result.failures, {"src/ui/home.tsx": ["Quit now"]})
        replacements = self.read_record("ui", "home.json")["replacements"]
        self.assertEqual(replacements["Open settings"], "译:Open settings")
        self.assertNotIn("Quit now", replacements)

    async def test_nothing_to_translate(self):
        self.write_source("src/ui/home.tsx", "<text>欢迎回来</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Welcome back": "欢迎回来"})

        result = await self.translator.scan_and_translate()

        self.assertTrue(result.success)
        self.assertEqual(result.translated, 0)
        self.assertEqual(self.backend.requests, [])

    async def test_second_run_finds_nothing(self):
        self.write_source("src/ui/home.tsx", "<text>Quit now</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Other": "其他"})

        await self.translator.scan_and_translate()
        second = await self.translator.scan_and_translate()

        self.assertEqual(second.translated, 0)
        self.assertEqual(len(self.backend.requests), 1)


class TestTranslateNewFiles(TranslatorTestCase):

    async def test_new_record_is_created_in_parent_category(self):
        self.write_source("src/cli/cmd/tui/fresh.tsx", "<text>Brand new view</text>\n")

        result = await self.translator.translate_new_files(["src/cli/cmd/tui/fresh.tsx"])

        self.assertEqual(result.new_files, ["src/cli/cmd/tui/fresh.tsx"])
        self.assertEqual(self.read_record("tui", "fresh.json"), {
            "file": "src/cli/cmd/tui/fresh.tsx",
            "replacements": {"Brand new view": "译:Brand new view"},
        })

    async def test_file_name_is_deduplicated(self):
        self.write_record("tui", "fresh.json", "src/other/tui/fresh.tsx", {"A": "甲"})
        self.write_source("src/cli/tui/fresh.tsx", "<text>Brand new view</text>\n")

        await self.translator.translate_new_files(["src/cli/tui/fresh.tsx"])

        self.assertEqual(self.read_record("tui", "fresh-2.json")["file"], "src/cli/tui/fresh.tsx")

    async def test_file_without_text_creates_nothing(self):
        self.write_source("src/cli/empty.tsx", "export const x = 1\n")

        result = await self.translator.translate_new_files(["src/cli/empty.tsx"])

        self.assertEqual(result.files, [])
        self.assertEqual(os.listdir(self.config.config_root), [])


class TestIncrementalTranslate(TranslatorTestCase):

    async def test_dry_run_reports_and_persists_nothing(self):
        changed = self.write_source("src/ui/home.tsx", "<text>Quit now</text>\n")
        self.write_source("src/ui/other.tsx", "<text>Untouched text</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Other": "其他"})
        self.write_record("ui", "other.json", "src/ui/other.tsx", {"Other": "其他"})
        self.vcs.uncommitted_changes.return_value = [changed]
        before = self.snapshot_config_root()

        result = await self.translator.incremental_translate(dry_run=True)

        self.assertTrue(result.success)
        self.assertEqual(result.scan, {"src/ui/home.tsx": ["Quit now"]})
        self.assertEqual(self.backend.requests, [])
        self.assertEqual(self.snapshot_config_root(), before)

    async def test_since_revision_is_passed_to_vcs(self):
        changed = self.write_source("src/ui/home.tsx", "<text>Quit now</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Other": "其他"})
        self.vcs.changed_since.return_value = [changed]

        result = await self.translator.incremental_translate(since="v1.0.0", uncommitted=False)

        self.vcs.changed_since.assert_called_once_with("v1.0.0")
        self.vcs.uncommitted_changes.assert_not_called()
        self.assertEqual(result.translated, 1)
        self.assertEqual(self.read_record("ui", "home.json")["replacements"]["Quit now"], "译:Quit now")

    async def test_changed_new_file_gets_a_record(self):
        changed = self.write_source("src/dialogs/fresh.tsx", "<text>Fresh dialog</text>\n")
        self.write_record("ui", "home.json", "src/ui/home.tsx", {"Other": "其他"})
        self.vcs.uncommitted_changes.return_value = [changed]

        result = await self.translator.incremental_translate()

        self.assertEqual(result.new_files, ["src/dialogs/fresh.tsx"])
        self.assertEqual(self.read_record("dialogs", "fresh.json")["file"], "src/dialogs/fresh.tsx")

    async def test_no_changes(self):
        result = await self.translator.incremental_translate()

        self.assertTrue(result.success)
        self.assertEqual(result.scan, {})

    async def test_git_failure_is_reported(self):
        self.vcs.uncommitted_changes.side_effect = GitError("not a git repository")

        result = await self.translator.incremental_translate()

        self.assertFalse(result.success)


class TestHelpers(unittest.TestCase):

    def test_build_context_skips_identity_pairs(self):
        record = TranslationRecord("ui", "a.json", "src/a.tsx", {"OpenCode": "OpenCode", "Save": "保存"})
        context = build_context(record, "gpt-4o-mini")
        self.assertIn("Source file: src/a.tsx", context)
        self.assertIn('"Save" => "保存"', context)
        self.assertNotIn('"OpenCode" => "OpenCode"', context)

    def test_build_context_respects_token_budget(self):
        record = TranslationRecord("ui", "a.json", "src/a.tsx", {f"Text {i}": f"文本 {i}" for i in range(50)})
        context = build_context(record, "gpt-4o-mini", max_tokens=0)
        self.assertEqual(context, "Source file: src/a.tsx")

    def test_run_result_merge(self):
        first = TranslationRunResult(files=["a"], translated=1)
        second = TranslationRunResult(files=["b"], translated=2, failures={"b": ["x"]}, success=False)
        first.merge(second)
        self.assertEqual(first.files, ["a", "b"])
        self.assertEqual(first.translated, 3)
        self.assertFalse(first.success)
