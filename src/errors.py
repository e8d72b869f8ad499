"""Exception types raised by the localization pipeline."""
from typing import List


class I18nError(Exception):
    """Base class for all pipeline errors."""


class ConfigDirectoryMissing(I18nError):
    """The translation configuration root does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Translation configuration directory does not exist: {path}")
        self.path = path


class NoConfigFilesFound(I18nError):
    """The configuration root exists but holds no translation records."""

    def __init__(self, path: str):
        super().__init__(f"no configuration files found in '{path}'")
        self.path = path


class ConfigParseError(I18nError):
    """A single configuration file could not be parsed into a record."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid configuration file '{path}': {reason}")
        self.path = path
        self.reason = reason


class TranslationRequestFailure(I18nError):
    """The AI collaborator failed to translate one string."""

    def __init__(self, text: str, reason: str):
        super().__init__(f"Translation failed for '{text}': {reason}")
        self.text = text
        self.reason = reason


class ValidationError(I18nError):
    """Configuration validation produced one or more errors."""

    def __init__(self, errors: List[str]):
        super().__init__(f"{len(errors)} configuration error(s) found")
        self.errors = list(errors)


class QualityCheckFailure(I18nError):
    """A post-apply quality check failed."""

    def __init__(self, failures: List[str]):
        super().__init__("Quality check failed: " + "; ".join(failures))
        self.failures = list(failures)
