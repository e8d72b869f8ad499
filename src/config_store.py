"""
Loading and saving of translation configuration records.

The configuration root holds one sub-directory per category; every ``*.json``
file inside a category is one record::

    opencode-i18n/
        config.json            project metadata (not a record)
        dialogs/
            status.json        {"file": "...", "replacements": {...}}
"""
import json
import os
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

import jsonschema

from src.app_config import AppConfig
from src.errors import ConfigDirectoryMissing, ConfigParseError
from src.logging_config import get_logger

METADATA_FILE_NAME = "config.json"

# Types only: a missing ``file`` or empty ``replacements`` is reported by
# validation, not rejected at load time.
RECORD_SCHEMA = {
    "type": "object",
    "properties": {
        "file": {"type": "string"},
        "replacements": {
            "type": "object",
            "additionalProperties": {"type": "string"}
        }
    }
}

logger = get_logger()


@dataclass
class TranslationRecord:
    """Original -> translated string map for one source file."""
    category: str
    file_name: str
    file: str = ""
    replacements: Dict[str, str] = field(default_factory=dict)
    config_path: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.category}/{self.file_name}"

    @property
    def is_placeholder(self) -> bool:
        return not self.replacements

    def to_json(self) -> Dict[str, object]:
        return {"file": self.file, "replacements": dict(self.replacements)}


class ConfigCollection:
    """All translation records, in load order."""

    def __init__(self, records: Optional[List[TranslationRecord]] = None):
        self.records: List[TranslationRecord] = list(records or [])

    def __iter__(self) -> Iterator[TranslationRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __bool__(self) -> bool:
        return bool(self.records)

    def add(self, record: TranslationRecord) -> None:
        self.records.append(record)

    def by_category(self) -> Dict[str, List[TranslationRecord]]:
        grouped: Dict[str, List[TranslationRecord]] = {}
        for record in self.records:
            grouped.setdefault(record.category, []).append(record)
        return grouped

    def configured_files(self) -> Set[str]:
        """The ``file`` values of every record that has one."""
        return {record.file for record in self.records if record.file}


@dataclass
class ProjectMetadata:
    """Project-wide settings stored next to the categories. Read-only here."""
    version: str = "1.0.0"
    opencode_version: str = "main"
    supported_commit: Optional[str] = None


def parse_record(config_path: str, category: str, file_name: str) -> TranslationRecord:
    """
    Parse one configuration file.

    Raises:
        ConfigParseError: if the file is not valid JSON or does not match RECORD_SCHEMA.
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            content = json.load(f)
        jsonschema.validate(instance=content, schema=RECORD_SCHEMA)
    except json.JSONDecodeError as json_exc:
        raise ConfigParseError(config_path, f"invalid JSON ({json_exc})") from json_exc
    except jsonschema.ValidationError as schema_exc:
        raise ConfigParseError(config_path, schema_exc.message) from schema_exc
    except (OSError, UnicodeDecodeError) as io_exc:
        raise ConfigParseError(config_path, str(io_exc)) from io_exc

    return TranslationRecord(
        category=category,
        file_name=file_name,
        file=content.get("file") or "",
        replacements=dict(content.get("replacements") or {}),
        config_path=config_path,
    )


class ConfigStore:
    """Reads and writes TranslationRecords under ``config.config_root``."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.root = config.config_root

    def load_all(self) -> ConfigCollection:
        """
        Load every record from the category sub-directories.

        Unparseable files are logged and skipped.

        Raises:
            ConfigDirectoryMissing: if the configuration root does not exist.
        """
        if not os.path.isdir(self.root):
            raise ConfigDirectoryMissing(self.root)

        collection = ConfigCollection()
        for category in sorted(os.listdir(self.root)):
            category_dir = os.path.join(self.root, category)
            if not os.path.isdir(category_dir):
                continue
            for file_name in sorted(os.listdir(category_dir)):
                if not file_name.endswith('.json'):
                    continue
                config_path = os.path.join(category_dir, file_name)
                try:
                    collection.add(parse_record(config_path, category, file_name))
                except ConfigParseError as parse_exc:
                    logger.warning("Skipping invalid configuration: %s", parse_exc)

        logger.debug("Loaded %d translation record(s) from '%s'", len(collection), self.root)
        return collection

    def save(self, record: TranslationRecord) -> str:
        """Write a record to ``<root>/<category>/<file_name>`` and return the path."""
        category_dir = os.path.join(self.root, record.category)
        os.makedirs(category_dir, exist_ok=True)
        config_path = os.path.join(category_dir, record.file_name)
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(record.to_json(), f, ensure_ascii=False, indent=2)
            f.write("\n")
        record.config_path = config_path
        logger.debug("Saved %d replacement(s) to '%s'", len(record.replacements), config_path)
        return config_path

    def load_metadata(self) -> ProjectMetadata:
        metadata_path = os.path.join(self.root, METADATA_FILE_NAME)
        if not os.path.exists(metadata_path):
            return ProjectMetadata()
        try:
            with open(metadata_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read project metadata '%s': %s. Using defaults.", metadata_path, exc)
            return ProjectMetadata()
        if not isinstance(data, dict):
            logger.warning("Project metadata '%s' is not a JSON object. Using defaults.", metadata_path)
            return ProjectMetadata()
        return ProjectMetadata(
            version=data.get("version") or "1.0.0",
            opencode_version=data.get("opencodeVersion") or "main",
            supported_commit=data.get("supportedCommit"),
        )

    def find_orphaned(self, collection: Optional[ConfigCollection] = None) -> List[TranslationRecord]:
        """Records whose source file no longer exists in the source tree."""
        collection = collection if collection is not None else self.load_all()
        return [
            record for record in collection
            if record.file and not os.path.exists(self.config.resolve_source_file(record.file))
        ]

    def prune_orphaned(self, dry_run: bool = False) -> List[TranslationRecord]:
        """Delete the configuration files of orphaned records."""
        orphaned = self.find_orphaned()
        for record in orphaned:
            if dry_run:
                logger.info("[Dry Run] Would remove orphaned configuration '%s' (%s)", record.label, record.file)
                continue
            if record.config_path and os.path.exists(record.config_path):
                os.remove(record.config_path)
                logger.info("Removed orphaned configuration '%s' (%s)", record.label, record.file)
        return orphaned
