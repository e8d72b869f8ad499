"""
Scan-and-translate orchestration.

Untranslated fragments found by the Scanner are sent to the translation
backend and merged into the owning TranslationRecord. Existing keys are never
overwritten, so running the translator again only fills remaining gaps.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from tqdm import tqdm

from src.app_config import AppConfig
from src.config_store import ConfigCollection, ConfigStore, TranslationRecord
from src.logging_config import get_logger
from src.scanner import ScanResult, Scanner, count_fragments, extract_candidates
from src.translation_backend import OpenAITranslationBackend, TranslationBackend, count_tokens
from src.vcs import GitClient, GitError

# Token budget for the sample of existing translations sent as context.
CONTEXT_TOKEN_BUDGET = 600

logger = get_logger()


@dataclass
class TranslationRunResult:
    """Outcome of one translation run."""
    files: List[str] = field(default_factory=list)
    translated: int = 0
    failures: Dict[str, List[str]] = field(default_factory=dict)
    scan: ScanResult = field(default_factory=dict)
    new_files: List[str] = field(default_factory=list)
    success: bool = True

    def merge(self, other: "TranslationRunResult") -> None:
        self.files.extend(f for f in other.files if f not in self.files)
        self.translated += other.translated
        for file, failed in other.failures.items():
            self.failures.setdefault(file, []).extend(failed)
        self.scan.update(other.scan)
        self.new_files.extend(other.new_files)
        self.success = self.success and other.success


def build_context(record: TranslationRecord, model_name: str, max_tokens: int = CONTEXT_TOKEN_BUDGET) -> str:
    """Describe the source file and show a token-bounded sample of its existing translations."""
    lines = [f"Source file: {record.file}"]
    examples = []
    total_tokens = 0
    for original, translated in record.replacements.items():
        if original == translated:
            continue
        example = f'"{original}" => "{translated}"'
        example_tokens = count_tokens(example, model_name)
        if total_tokens + example_tokens > max_tokens:
            break
        examples.append(example)
        total_tokens += example_tokens
    if examples:
        lines.append("Existing translations in this file:")
        lines.extend(examples)
    return "\n".join(lines)


class Translator:
    """Fills translation gaps using the AI backend and persists the results."""

    def __init__(
            self,
            config: AppConfig,
            backend: Optional[TranslationBackend] = None,
            store: Optional[ConfigStore] = None,
            scanner: Optional[Scanner] = None,
            vcs: Optional[GitClient] = None
    ):
        self.config = config
        self.store = store or ConfigStore(config)
        self.scanner = scanner or Scanner(config, self.store)
        self._backend = backend
        self.vcs = vcs or GitClient(config.source_root)

    @property
    def backend(self) -> TranslationBackend:
        if self._backend is None:
            self._backend = OpenAITranslationBackend(self.config)
        return self._backend

    def scan_all_files(self, restrict_to: Optional[Iterable[str]] = None) -> ScanResult:
        return self.scanner.scan_all_files(restrict_to=restrict_to)

    async def _translate_record(self, record: TranslationRecord, fragments: List[str],
                                result: TranslationRunResult) -> int:
        """Translate ``fragments`` and merge them into ``record``. Returns the number of keys added."""
        batch = await self.backend.translate_batch(fragments, build_context(record, self.config.model_name))

        added = 0
        for fragment in fragments:
            translated = batch.translations.get(fragment)
            if translated is None:
                continue
            if fragment not in record.replacements:
                record.replacements[fragment] = translated
                added += 1

        for fragment, reason in batch.failures.items():
            logger.warning("Translation failed in %s for '%s': %s", record.file, fragment, reason)
            result.failures.setdefault(record.file, []).append(fragment)
            result.success = False

        return added

    async def _translate_scan(self, collection: ConfigCollection, scan: ScanResult) -> TranslationRunResult:
        result = TranslationRunResult(scan=dict(scan))
        pending = dict(scan)
        work = []
        for record in collection:
            fragments = pending.pop(record.file, None)
            if fragments:
                work.append((record, fragments))

        for record, fragments in tqdm(work, desc="Translating", unit="file", disable=not work):
            added = await self._translate_record(record, fragments, result)
            if added:
                self.store.save(record)
                result.files.append(record.file)
                result.translated += added
                logger.info("Added %d translation(s) to %s", added, record.label)

        return result

    async def scan_and_translate(self, restrict_to: Optional[Iterable[str]] = None) -> TranslationRunResult:
        """
        Translate every untranslated fragment in the configured files.

        Failed strings are logged and left out; everything that succeeded is
        saved and ``success`` is False.
        """
        collection = self.store.load_all()
        scan = self.scanner.scan_all_files(collection, restrict_to=restrict_to)
        if not scan:
            logger.info("All configured files are fully translated.")
            return TranslationRunResult()

        logger.info("Found %d untranslated fragment(s) in %d file(s)", count_fragments(scan), len(scan))
        result = await self._translate_scan(collection, scan)
        if not result.success:
            failed = sum(len(v) for v in result.failures.values())
            logger.warning("%d translation(s) failed; successful translations were saved.", failed)
        return result

    def _unique_file_name(self, category: str, stem: str) -> str:
        category_dir = os.path.join(self.store.root, category)
        file_name = f"{stem}.json"
        counter = 2
        while os.path.exists(os.path.join(category_dir, file_name)):
            file_name = f"{stem}-{counter}.json"
            counter += 1
        return file_name

    async def translate_new_files(self, paths: Iterable[str]) -> TranslationRunResult:
        """
        Create records for source files that have none.

        Args:
            paths: Source files relative to the package directory (``src/...``).
        """
        result = TranslationRunResult()
        for relative_path in paths:
            source_path = self.config.resolve_source_file(relative_path)
            if not os.path.isfile(source_path):
                logger.debug("New file '%s' disappeared, skipping", relative_path)
                continue
            with open(source_path, 'r', encoding='utf-8') as f:
                fragments = extract_candidates(f.read())
            if not fragments:
                logger.info("No user-facing text found in new file %s", relative_path)
                continue

            parts = relative_path.replace("\\", "/").split("/")
            category = parts[-2] if len(parts) > 1 else "misc"
            stem = os.path.splitext(parts[-1])[0]
            record = TranslationRecord(
                category=category,
                file_name=self._unique_file_name(category, stem),
                file=relative_path,
            )
            result.scan[relative_path] = fragments

            added = await self._translate_record(record, fragments, result)
            if added:
                self.store.save(record)
                result.files.append(relative_path)
                result.new_files.append(relative_path)
                result.translated += added
                logger.info("Created %s with %d translation(s)", record.label, added)
        return result

    def changed_files(self, since: Optional[str] = None, uncommitted: bool = True) -> List[str]:
        """Absolute paths changed since ``since`` and/or in the working tree."""
        changed: List[str] = []
        if since:
            changed.extend(self.vcs.changed_since(since))
        if uncommitted:
            changed.extend(self.vcs.uncommitted_changes())
        return list(dict.fromkeys(changed))

    async def incremental_translate(
            self,
            since: Optional[str] = None,
            uncommitted: bool = True,
            dry_run: bool = False
    ) -> TranslationRunResult:
        """
        Translate only files changed since ``since`` or in the working tree.

        With ``dry_run`` the scan result is returned and nothing is persisted.
        """
        try:
            changed = self.changed_files(since, uncommitted)
        except GitError as exc:
            logger.error("Could not determine changed files: %s", exc)
            return TranslationRunResult(success=False)

        if not changed:
            logger.info("No changed files detected.")
            return TranslationRunResult()
        logger.info("Detected %d changed file(s)", len(changed))

        collection = self.store.load_all()
        scan = self.scanner.scan_all_files(collection, restrict_to=changed)
        new_files = self.scanner.detect_new_files(collection, restrict_to=changed)

        if dry_run:
            for file, fragments in scan.items():
                logger.info("[Dry Run] %s: %d untranslated fragment(s)", file, len(fragments))
            for relative_path in new_files:
                logger.info("[Dry Run] New file without configuration: %s", relative_path)
            return TranslationRunResult(files=list(scan), scan=scan, new_files=new_files)

        result = await self._translate_scan(collection, scan) if scan else TranslationRunResult()
        if new_files:
            result.merge(await self.translate_new_files(new_files))
        return result
