"""Command line entry point: ``opencode-i18n apply|verify|scan|prune``."""
import asyncio
from typing import Optional

import typer

from src.app_config import AppConfig, load_app_config
from src.config_store import ConfigStore
from src.errors import I18nError, ValidationError
from src.pipeline import ApplyOptions, Pipeline
from src.translator import Translator

app = typer.Typer(add_completion=False, help="Localization toolkit for the OpenCode source tree.")


def _config() -> AppConfig:
    return load_app_config()


def _fail(exc: I18nError) -> None:
    typer.echo(f"Error: {exc}", err=True)
    for item in getattr(exc, "errors", None) or getattr(exc, "failures", None) or []:
        typer.echo(f"  - {item}", err=True)
    raise typer.Exit(code=1)


@app.command()
def apply(
    skip_translate: bool = typer.Option(False, "--skip-translate", help="Skip scanning and AI translation"),
    auto_translate: bool = typer.Option(False, "--auto-translate", help="Translate gaps with the AI backend"),
    skip_verify: bool = typer.Option(False, "--skip-verify", help="Skip configuration validation"),
    skip_quality_check: bool = typer.Option(False, "--skip-quality-check", help="Skip the post-apply quality check"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Scan only; translate and write nothing"),
    incremental: bool = typer.Option(False, "--incremental", help="Only scan files changed in git"),
    since: Optional[str] = typer.Option(None, "--since", help="Revision to diff against in incremental mode"),
):
    """Scan, translate, validate and apply translations to the source tree."""
    options = ApplyOptions(
        skip_translate=skip_translate,
        auto_translate=auto_translate,
        skip_verify=skip_verify,
        skip_quality_check=skip_quality_check,
        dry_run=dry_run,
        incremental=incremental,
        since=since,
    )
    try:
        outcome = asyncio.run(Pipeline(_config()).apply(options))
        if outcome.validation_errors:
            raise ValidationError(outcome.validation_errors)
        if outcome.apply_result is not None:
            typer.echo(f"Applied: {outcome.apply_result.files_changed} file(s), "
                       f"{outcome.apply_result.replacements_made} replacement(s)")
        if outcome.quality is not None:
            typer.echo(f"Quality check: {outcome.quality.verdict}")
            outcome.quality.raise_for_failure()
    except I18nError as exc:
        _fail(exc)
        return

    if not outcome.success:
        raise typer.Exit(code=1)


@app.command()
def verify(
    detailed: bool = typer.Option(False, "--detailed", help="Per-category stats and unconfigured files"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Also check which keys match the source tree"),
):
    """Validate the translation configuration and report coverage."""
    try:
        ok = Pipeline(_config()).verify(detailed=detailed, dry_run=dry_run)
    except I18nError as exc:
        _fail(exc)
        return
    typer.echo("Verification passed" if ok else "Verification failed")
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def scan(
    incremental: bool = typer.Option(False, "--incremental", help="Only scan files changed in git"),
    since: Optional[str] = typer.Option(None, "--since", help="Revision to diff against in incremental mode"),
):
    """List untranslated text and files without configuration. Nothing is written."""
    config = _config()
    try:
        if incremental:
            result = asyncio.run(Translator(config).incremental_translate(since=since, dry_run=True))
            if not result.success:
                raise typer.Exit(code=1)
            untranslated, new_files = result.scan, result.new_files
        else:
            translator = Translator(config)
            untranslated = translator.scan_all_files()
            new_files = translator.scanner.detect_new_files()
    except I18nError as exc:
        _fail(exc)
        return

    for file, fragments in untranslated.items():
        typer.echo(f"{file} ({len(fragments)})")
        for fragment in fragments:
            typer.echo(f"  {fragment}")
    for file in new_files:
        typer.echo(f"new: {file}")
    if not untranslated and not new_files:
        typer.echo("Nothing to translate")


@app.command()
def prune(dry_run: bool = typer.Option(False, "--dry-run", help="Only list orphaned configuration")):
    """Remove configuration records whose source file no longer exists."""
    try:
        orphaned = ConfigStore(_config()).prune_orphaned(dry_run=dry_run)
    except I18nError as exc:
        _fail(exc)
        return
    verb = "Would remove" if dry_run else "Removed"
    for record in orphaned:
        typer.echo(f"{verb} {record.label} ({record.file})")
    typer.echo(f"{len(orphaned)} orphaned record(s)")


def main():
    app()


if __name__ == "__main__":
    main()
