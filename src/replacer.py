"""Substitution of configured translations into the live source tree."""
import os
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from src.app_config import AppConfig
from src.config_store import ConfigCollection, ConfigStore, TranslationRecord
from src.errors import NoConfigFilesFound
from src.logging_config import get_logger

SIMPLE_WORD_PATTERN = re.compile(r'^[A-Za-z0-9]+$')

logger = get_logger()


@dataclass
class ConfigApplyResult:
    """Outcome of applying one record."""
    file: str
    files: int = 0
    replacements: int = 0
    skipped: bool = False
    skip_reason: str = ""


@dataclass
class ApplyResult:
    """Aggregated outcome of one apply pass."""
    files_changed: int = 0
    replacements_made: int = 0
    details: List[ConfigApplyResult] = field(default_factory=list)


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n")


def word_boundary_pattern(word: str) -> re.Pattern:
    """Whole-word pattern: neighbours must not be identifier characters (letters, digits, '_')."""
    return re.compile(rf'(?<![A-Za-z0-9_]){re.escape(word)}(?![A-Za-z0-9_])')


def replace_text(content: str, original: str, translated: str) -> Tuple[str, bool]:
    """
    Replace ``original`` with ``translated`` in ``content``.

    Bare alphanumeric tokens only match as whole words, so ``Status`` never
    touches ``DialogStatus``; anything else is replaced wherever it occurs.

    Returns:
        The new content and whether it changed. An identity pair never
        counts as a substitution.
    """
    original = normalize_line_endings(original)
    if not original:
        return content, False
    if original != translated and original in translated:
        # Text already carrying the translation must not be matched again
        segments = content.split(translated)
        new_content = translated.join(_substitute(segment, original, translated) for segment in segments)
    else:
        new_content = _substitute(content, original, translated)
    return new_content, new_content != content


def _substitute(content: str, original: str, translated: str) -> str:
    if SIMPLE_WORD_PATTERN.match(original):
        return word_boundary_pattern(original).sub(lambda _match: translated, content)
    return content.replace(original, translated)


class Replacer:
    """Applies TranslationRecords to the source tree. The only writer of source files."""

    def __init__(self, config: AppConfig, store: Optional[ConfigStore] = None):
        self.config = config
        self.store = store or ConfigStore(config)

    def apply_config(self, record: TranslationRecord, dry_run: bool = False) -> ConfigApplyResult:
        """
        Apply one record's replacements to its source file.

        Missing source files are skipped: upstream removing a file is not an error.
        """
        result = ConfigApplyResult(file=record.file)
        if not record.file or not record.replacements:
            result.skipped = True
            result.skip_reason = "missing file or replacements"
            return result

        target_path = self.config.resolve_source_file(record.file)
        if not os.path.isfile(target_path):
            result.skipped = True
            result.skip_reason = "source file does not exist"
            logger.debug("Skipping '%s': %s not found", record.label, target_path)
            return result

        with open(target_path, 'r', encoding='utf-8', newline='') as f:
            original_content = normalize_line_endings(f.read())
        content = original_content

        for original, translated in record.replacements.items():
            content, matched = replace_text(content, original, translated)
            if matched:
                result.replacements += 1

        if content != original_content:
            result.files = 1
            if dry_run:
                logger.info("[Dry Run] Would update %s (%d replacement(s))", record.file, result.replacements)
            else:
                with open(target_path, 'w', encoding='utf-8', newline='') as f:
                    f.write(content)
                logger.info("  ✓ %s (%d replacement(s))", record.file, result.replacements)

        return result

    def apply(self, collection: Optional[ConfigCollection] = None, dry_run: bool = False) -> ApplyResult:
        """
        Apply every record.

        Raises:
            NoConfigFilesFound: if there is no record at all.
        """
        collection = collection if collection is not None else self.store.load_all()
        if not collection:
            raise NoConfigFilesFound(self.store.root)

        logger.info("Found %d configuration file(s)", len(collection))
        total = ApplyResult()
        for record in collection:
            record_result = self.apply_config(record, dry_run=dry_run)
            total.files_changed += record_result.files
            total.replacements_made += record_result.replacements
            total.details.append(record_result)

        logger.info("Applied translations: %d file(s), %d replacement(s)",
                    total.files_changed, total.replacements_made)
        return total
