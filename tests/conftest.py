import json
import logging
import os
from typing import Dict, List
from unittest.mock import MagicMock, patch

import pytest

from src.app_config import AppConfig
from src.logging_config import LOGGER_NAME
from src.translation_backend import BatchTranslation, TranslationBackend
from src.type_checker import TypeCheckResult


class FakeBackend(TranslationBackend):
    """Deterministic stand-in for the AI collaborator: prefixes each text with '译:'."""

    def __init__(self, fail: List[str] = None):
        self.fail = set(fail or [])
        self.calls: List[List[str]] = []
        self.contexts: List[str] = []

    async def translate_batch(self, texts, context):
        self.calls.append(list(texts))
        self.contexts.append(context)
        result = BatchTranslation()
        for text in texts:
            if text in self.fail:
                result.failures[text] = "simulated failure"
            else:
                result.translations[text] = f"译:{text}"
        return result


class FakeTypeChecker:
    def __init__(self, result: TypeCheckResult = None):
        self.result = result or TypeCheckResult()
        self.runs = 0

    def run(self):
        self.runs += 1
        return self.result


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep pipeline logging out of test output."""
    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    yield logger
    logger.handlers[:] = handlers


@pytest.fixture(autouse=True)
def offline_tokenizer():
    """Whitespace tokenizer so token counting never downloads encodings."""
    encoding = MagicMock()
    encoding.encode.side_effect = lambda text: text.split()
    with patch("src.translation_backend.tiktoken.encoding_for_model", return_value=encoding) as mocked:
        yield mocked


@pytest.fixture
def app_config(tmp_path):
    """AppConfig rooted in a temporary upstream tree and configuration root."""
    source_root = tmp_path / "opencode"
    config_root = tmp_path / "opencode-i18n"
    (source_root / "packages" / "opencode" / "src").mkdir(parents=True)
    config_root.mkdir()
    return AppConfig(
        project_root=str(tmp_path),
        source_root=str(source_root),
        config_root=str(config_root),
        critical_files=[],
        openai_client=None,
    )


@pytest.fixture
def write_source(app_config):
    """Write a file below the package directory and return its absolute path."""
    def _write(relative_path: str, content: str) -> str:
        path = app_config.resolve_source_file(relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        return path
    return _write


@pytest.fixture
def write_record(app_config):
    """Write a translation record and return its path."""
    def _write(category: str, file_name: str, file: str = None, replacements: Dict[str, str] = None) -> str:
        category_dir = os.path.join(app_config.config_root, category)
        os.makedirs(category_dir, exist_ok=True)
        content = {}
        if file is not None:
            content["file"] = file
        if replacements is not None:
            content["replacements"] = replacements
        path = os.path.join(category_dir, file_name)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(content, f, ensure_ascii=False, indent=2)
        return path
    return _write


@pytest.fixture
def read_source(app_config):
    def _read(relative_path: str) -> str:
        with open(app_config.resolve_source_file(relative_path), 'r', encoding='utf-8', newline='') as f:
            return f.read()
    return _read


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def fake_type_checker():
    return FakeTypeChecker()


@pytest.fixture
def make_backend():
    return FakeBackend


@pytest.fixture
def make_type_checker():
    return FakeTypeChecker
