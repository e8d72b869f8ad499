"""
Validation, statistics, coverage and post-apply quality checks for
translation configuration.
"""
import os
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from src.app_config import AppConfig
from src.config_store import ConfigCollection, ConfigStore
from src.errors import QualityCheckFailure
from src.logging_config import get_logger
from src.replacer import normalize_line_endings, replace_text
from src.scanner import Scanner
from src.type_checker import TypeChecker

MISSING_FILE_ERROR = "missing 'file' field"
MISSING_REPLACEMENTS_ERROR = "missing replacements"

TAG_PATTERN = re.compile(r'<[^>]+>')
BRACE_PATTERN = re.compile(r'[{}]')
VARIABLE_PATTERN = re.compile(r'\{([^{}]+)\}')
# Variables containing any of these are expressions, not simple names
COMPLEX_EXPRESSION_CHARS = set(' ."\'()[]?')

PASS = "pass"
WARN = "warn"
FAIL = "fail"

VERDICT_PASSED = "passed"
VERDICT_PASSED_WITH_WARNINGS = "passed_with_warnings"
VERDICT_FAILED = "failed"

logger = get_logger()


@dataclass
class CategoryStats:
    count: int = 0
    replacements: int = 0


@dataclass
class CoverageStats:
    total_configs: int = 0
    total_replacements: int = 0
    categories: Dict[str, CategoryStats] = field(default_factory=dict)


@dataclass
class CoverageReport:
    total_files: int = 0
    configured_files: Set[str] = field(default_factory=set)
    coverage: float = 0.0
    unconfigured_files: List[str] = field(default_factory=list)


@dataclass
class VariableMismatch:
    label: str
    original: str
    translated: str
    missing: List[str] = field(default_factory=list)
    unexpected: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        parts = []
        if self.missing:
            parts.append("missing " + ", ".join("{%s}" % v for v in self.missing))
        if self.unexpected:
            parts.append("unexpected " + ", ".join("{%s}" % v for v in self.unexpected))
        return f"{self.label}: '{self.original}' -> '{self.translated}' ({'; '.join(parts)})"


@dataclass
class ApplySimulation:
    """How many configured keys would match the live source tree."""
    total_keys: int = 0
    matched_keys: int = 0
    missing_files: List[str] = field(default_factory=list)
    unmatched: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class CheckResult:
    name: str
    status: str
    message: str = ""
    issues: List[str] = field(default_factory=list)


@dataclass
class QualityReport:
    """Aggregated result of the post-apply quality checks."""
    checks: List[CheckResult] = field(default_factory=list)

    def get(self, name: str) -> Optional[CheckResult]:
        return next((check for check in self.checks if check.name == name), None)

    @property
    def warnings(self) -> List[str]:
        return [issue for check in self.checks if check.status == WARN for issue in check.issues]

    @property
    def failures(self) -> List[str]:
        return [check.message for check in self.checks if check.status == FAIL]

    @property
    def verdict(self) -> str:
        if any(check.status == FAIL for check in self.checks):
            return VERDICT_FAILED
        if any(check.status == WARN for check in self.checks):
            return VERDICT_PASSED_WITH_WARNINGS
        return VERDICT_PASSED

    @property
    def passed(self) -> bool:
        return self.verdict != VERDICT_FAILED

    def raise_for_failure(self) -> None:
        """Raise QualityCheckFailure if any check failed."""
        if not self.passed:
            raise QualityCheckFailure(self.failures)


def drop_placeholder_errors(errors: List[str]) -> List[str]:
    """Remove the empty-replacements class of errors, keeping everything else."""
    return [error for error in errors if not error.endswith(MISSING_REPLACEMENTS_ERROR)]


def extract_variables(text: str) -> Counter:
    """Simple ``{name}`` variables in ``text``, as a multiset."""
    return Counter(
        name for name in VARIABLE_PATTERN.findall(text)
        if not COMPLEX_EXPRESSION_CHARS.intersection(name)
    )


def structural_issues(original: str, translated: str) -> List[str]:
    """Tag and brace counts compared separately; one issue per mismatch."""
    issues = []
    original_tags, translated_tags = len(TAG_PATTERN.findall(original)), len(TAG_PATTERN.findall(translated))
    if original_tags != translated_tags:
        issues.append(f"tag count mismatch ({original_tags} vs {translated_tags})")
    original_braces, translated_braces = len(BRACE_PATTERN.findall(original)), len(BRACE_PATTERN.findall(translated))
    if original_braces != translated_braces:
        issues.append(f"brace count mismatch ({original_braces} vs {translated_braces})")
    return issues


class TranslationValidator:
    """Checks configuration records and the patched source tree."""

    def __init__(
            self,
            config: AppConfig,
            store: Optional[ConfigStore] = None,
            type_checker: Optional[TypeChecker] = None
    ):
        self.config = config
        self.store = store or ConfigStore(config)
        self.type_checker = type_checker or TypeChecker(config)

    def _collection(self, collection: Optional[ConfigCollection]) -> ConfigCollection:
        return collection if collection is not None else self.store.load_all()

    def validate(self, collection: Optional[ConfigCollection] = None) -> List[str]:
        """
        Report records with no ``file`` and records with no replacements.

        Callers that tolerate placeholder records filter the result with
        drop_placeholder_errors().
        """
        errors = []
        for record in self._collection(collection):
            if not record.file:
                errors.append(f"{record.label}: {MISSING_FILE_ERROR}")
            if not record.replacements:
                errors.append(f"{record.label}: {MISSING_REPLACEMENTS_ERROR}")
        return errors

    def get_stats(self, collection: Optional[ConfigCollection] = None) -> CoverageStats:
        stats = CoverageStats()
        for record in self._collection(collection):
            stats.total_configs += 1
            stats.total_replacements += len(record.replacements)
            category = stats.categories.setdefault(record.category, CategoryStats())
            category.count += 1
            category.replacements += len(record.replacements)
        return stats

    def coverage_report(self, collection: Optional[ConfigCollection] = None) -> CoverageReport:
        """Share of eligible source files that have at least one record."""
        collection = self._collection(collection)
        source_files = Scanner(self.config, self.store).list_source_files()
        configured = {self.config.package_relative(f) for f in collection.configured_files()}

        report = CoverageReport(total_files=len(source_files), configured_files=configured)
        report.unconfigured_files = [f for f in source_files if f not in configured]
        if source_files:
            covered = len(source_files) - len(report.unconfigured_files)
            report.coverage = round(covered / len(source_files) * 100, 1)
        return report

    def check_variables(self, collection: Optional[ConfigCollection] = None) -> List[VariableMismatch]:
        mismatches = []
        for record in self._collection(collection):
            for original, translated in record.replacements.items():
                expected, actual = extract_variables(original), extract_variables(translated)
                if expected == actual:
                    continue
                mismatches.append(VariableMismatch(
                    label=record.label,
                    original=original,
                    translated=translated,
                    missing=sorted((expected - actual).elements()),
                    unexpected=sorted((actual - expected).elements()),
                ))
        return mismatches

    def simulate_apply(self, collection: Optional[ConfigCollection] = None) -> ApplySimulation:
        """Count configured keys that currently match their live source file. Nothing is written."""
        simulation = ApplySimulation()
        for record in self._collection(collection):
            if not record.file or not record.replacements:
                continue
            simulation.total_keys += len(record.replacements)
            source_path = self.config.resolve_source_file(record.file)
            if not os.path.isfile(source_path):
                simulation.missing_files.append(record.file)
                continue
            with open(source_path, 'r', encoding='utf-8', newline='') as f:
                content = normalize_line_endings(f.read())
            for original, translated in record.replacements.items():
                _, matched = replace_text(content, original, translated)
                if matched:
                    simulation.matched_keys += 1
                else:
                    simulation.unmatched.setdefault(record.file, []).append(original)
        return simulation

    def check_structure(self, collection: Optional[ConfigCollection] = None) -> CheckResult:
        issues = []
        for record in self._collection(collection):
            for original, translated in record.replacements.items():
                for issue in structural_issues(original, translated):
                    issues.append(f"{record.label}: '{original}' -> '{translated}': {issue}")
        if issues:
            return CheckResult("structure", WARN, f"{len(issues)} possible broken template(s)", issues)
        return CheckResult("structure", PASS, "tags and braces balanced")

    def check_compiler(self) -> CheckResult:
        result = self.type_checker.run()
        if result.timed_out:
            return CheckResult("compiler", FAIL, "type check timed out")
        if result.not_installed:
            return CheckResult("compiler", WARN, "type checker not available, check skipped",
                               ["type checker not available"])
        if result.error_count:
            details = [str(d) for d in result.diagnostics]
            return CheckResult("compiler", FAIL, f"{result.error_count} type error(s)", details)
        return CheckResult("compiler", PASS, "no type errors")

    def check_completeness(self) -> CheckResult:
        missing = [f for f in self.config.critical_files
                   if not os.path.isfile(self.config.resolve_source_file(f))]
        if missing:
            return CheckResult("completeness", FAIL, f"{len(missing)} critical file(s) missing", missing)
        return CheckResult("completeness", PASS, "all critical files present")

    def run_quality_check(self, collection: Optional[ConfigCollection] = None) -> QualityReport:
        """
        Run the structural, compiler and completeness checks.

        Structural mismatches only ever downgrade the verdict to
        ``passed_with_warnings``; the compiler and completeness checks decide
        pass or fail.
        """
        report = QualityReport(checks=[
            self.check_structure(collection),
            self.check_compiler(),
            self.check_completeness(),
        ])

        for check in report.checks:
            if check.status == FAIL:
                logger.error("Quality check '%s' failed: %s", check.name, check.message)
                for issue in check.issues[:10]:
                    logger.error("  - %s", issue)
            elif check.status == WARN:
                logger.warning("Quality check '%s': %s", check.name, check.message)
                for issue in check.issues[:10]:
                    logger.warning("  - %s", issue)
            else:
                logger.info("Quality check '%s' passed: %s", check.name, check.message)
        logger.info("Quality check verdict: %s", report.verdict)
        return report
