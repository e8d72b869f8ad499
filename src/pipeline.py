"""
The ``apply`` and ``verify`` workflows.

apply:  scan -> AI translation -> validate -> apply -> quality check -> coverage
verify: validate -> stats -> variable check -> (simulated apply) -> coverage
"""
from dataclasses import dataclass, field
from typing import List, Optional

from src.app_config import AppConfig
from src.config_store import ConfigStore
from src.errors import NoConfigFilesFound
from src.logging_config import get_logger
from src.replacer import ApplyResult, Replacer
from src.scanner import ScanResult, Scanner, count_fragments
from src.translation_backend import TranslationBackend
from src.translation_validator import (
    CoverageReport,
    QualityReport,
    TranslationValidator,
    drop_placeholder_errors,
)
from src.translator import TranslationRunResult, Translator
from src.type_checker import TypeChecker
from src.vcs import GitClient, GitError

# Number of files listed when summarising scan results and coverage gaps
MAX_LISTED_FILES = 10

logger = get_logger()


@dataclass
class ApplyOptions:
    skip_translate: bool = False
    auto_translate: bool = False
    skip_verify: bool = False
    skip_quality_check: bool = False
    dry_run: bool = False
    incremental: bool = False
    since: Optional[str] = None


@dataclass
class PipelineOutcome:
    """Everything one ``apply`` run produced."""
    success: bool = True
    scan: ScanResult = field(default_factory=dict)
    new_files: List[str] = field(default_factory=list)
    translation: Optional[TranslationRunResult] = None
    validation_errors: List[str] = field(default_factory=list)
    apply_result: Optional[ApplyResult] = None
    quality: Optional[QualityReport] = None
    coverage: Optional[CoverageReport] = None


class Pipeline:
    """Wires the components for one run around a shared AppConfig."""

    def __init__(
            self,
            config: AppConfig,
            backend: Optional[TranslationBackend] = None,
            type_checker: Optional[TypeChecker] = None,
            vcs: Optional[GitClient] = None
    ):
        self.config = config
        self.store = ConfigStore(config)
        self.scanner = Scanner(config, self.store)
        self.replacer = Replacer(config, self.store)
        self.translator = Translator(config, backend=backend, store=self.store, scanner=self.scanner, vcs=vcs)
        self.validator = TranslationValidator(config, self.store, type_checker=type_checker)

    def _scan(self, options: ApplyOptions, outcome: PipelineOutcome) -> bool:
        """Fill ``outcome.scan``; returns False when the changed-file lookup failed."""
        collection = self.store.load_all()
        restrict_to = None
        if options.incremental:
            try:
                restrict_to = self.translator.changed_files(options.since)
            except GitError as exc:
                logger.error("Could not determine changed files: %s", exc)
                return False
            logger.info("Incremental mode: %d changed file(s)", len(restrict_to))

        outcome.scan = self.scanner.scan_all_files(collection, restrict_to=restrict_to)
        outcome.new_files = self.scanner.detect_new_files(collection, restrict_to=restrict_to)

        if outcome.scan:
            logger.warning("Found %d untranslated fragment(s) in %d file(s)",
                           count_fragments(outcome.scan), len(outcome.scan))
            for file, fragments in list(outcome.scan.items())[:MAX_LISTED_FILES]:
                logger.info("  + %s (%d)", file, len(fragments))
            if len(outcome.scan) > MAX_LISTED_FILES:
                logger.info("  ... and %d more file(s)", len(outcome.scan) - MAX_LISTED_FILES)
        else:
            logger.info("All configured text is translated.")
        if outcome.new_files:
            logger.info("%d source file(s) have no configuration yet", len(outcome.new_files))
        return True

    async def _translate(self, options: ApplyOptions) -> TranslationRunResult:
        if options.incremental:
            return await self.translator.incremental_translate(since=options.since)
        result = await self.translator.scan_and_translate()
        new_files = self.scanner.detect_new_files()
        if new_files:
            result.merge(await self.translator.translate_new_files(new_files))
        return result

    async def apply(self, options: Optional[ApplyOptions] = None) -> PipelineOutcome:
        """
        Run the apply workflow.

        Raises:
            ConfigDirectoryMissing: if the configuration root does not exist.
            NoConfigFilesFound: if it holds no records.
        """
        options = options or ApplyOptions()
        outcome = PipelineOutcome()

        if not self.store.load_all():
            raise NoConfigFilesFound(self.store.root)

        if not options.skip_translate:
            logger.info("Step 1/4: scanning for untranslated text")
            if not self._scan(options, outcome):
                outcome.success = False
                return outcome

            if options.dry_run:
                logger.info("Dry run: scan only, nothing translated or applied.")
                return outcome

            if options.auto_translate and (outcome.scan or outcome.new_files):
                logger.info("Step 2/4: AI translation")
                outcome.translation = await self._translate(options)
                if not outcome.translation.success:
                    logger.warning("Some translations failed; continuing with the successful ones.")
                    outcome.success = False
            elif outcome.scan or outcome.new_files:
                logger.info("Step 2/4: AI translation skipped (use --auto-translate)")

        if not options.skip_verify:
            logger.info("Step 3/4: validating configuration")
            outcome.validation_errors = self.validator.validate()
            if outcome.validation_errors:
                logger.error("Configuration errors found:")
                for error in outcome.validation_errors:
                    logger.error("  - %s", error)
                outcome.success = False
                return outcome
            stats = self.validator.get_stats()
            logger.info("Configuration valid: %d file(s), %d entr(y/ies)",
                        stats.total_configs, stats.total_replacements)

        logger.info("Step 4/4: applying translations to the source tree")
        outcome.apply_result = self.replacer.apply(dry_run=options.dry_run)

        if (not options.skip_quality_check and not options.dry_run
                and outcome.apply_result.replacements_made > 0):
            outcome.quality = self.validator.run_quality_check()
            outcome.success = outcome.success and outcome.quality.passed

        outcome.coverage = self.validator.coverage_report()
        log_coverage(outcome.coverage, detailed=False)
        return outcome

    def verify(self, detailed: bool = False, dry_run: bool = False) -> bool:
        """Validate configuration and report statistics. Placeholder records are tolerated."""
        collection = self.store.load_all()
        errors = drop_placeholder_errors(self.validator.validate(collection))
        if errors:
            logger.error("Configuration errors found:")
            for error in errors:
                logger.error("  - %s", error)
        else:
            logger.info("Configuration valid")

        stats = self.validator.get_stats(collection)
        logger.info("Configuration files: %d", stats.total_configs)
        logger.info("Translation entries: %d", stats.total_replacements)
        if detailed:
            for category, category_stats in sorted(stats.categories.items()):
                logger.info("  %s: %d file(s), %d entr(y/ies)",
                            category, category_stats.count, category_stats.replacements)

        mismatches = self.validator.check_variables(collection)
        if mismatches:
            logger.warning("%d translation(s) with mismatched variables:", len(mismatches))
            for mismatch in mismatches:
                logger.warning("  - %s", mismatch)

        if dry_run:
            simulation = self.validator.simulate_apply(collection)
            logger.info("[Dry Run] %d of %d key(s) would match the source tree",
                        simulation.matched_keys, simulation.total_keys)
            for file in simulation.missing_files:
                logger.info("[Dry Run] Source file missing: %s", file)
            if detailed:
                for file, keys in simulation.unmatched.items():
                    logger.info("[Dry Run] %s: %d unmatched key(s)", file, len(keys))

        log_coverage(self.validator.coverage_report(collection), detailed=detailed)
        return not errors


def log_coverage(report: CoverageReport, detailed: bool) -> None:
    logger.info("Coverage: %d/%d file(s) configured (%.1f%%)",
                report.total_files - len(report.unconfigured_files), report.total_files, report.coverage)
    if detailed and report.unconfigured_files:
        logger.info("Unconfigured files:")
        for file in report.unconfigured_files[:MAX_LISTED_FILES]:
            logger.info("  - %s", file)
        if len(report.unconfigured_files) > MAX_LISTED_FILES:
            logger.info("  ... and %d more", len(report.unconfigured_files) - MAX_LISTED_FILES)
