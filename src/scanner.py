"""
Detection of untranslated user-facing text in the upstream source tree.

Extraction is regex based: JSX text nodes and quoted string literals are
collected from the live file content and filtered down to fragments that look
like text a user would read.
"""
import os
import re
from typing import Dict, Iterable, List, Optional, Set

from src.app_config import AppConfig
from src.config_store import ConfigCollection, ConfigStore, TranslationRecord
from src.logging_config import get_logger

ScanResult = Dict[str, List[str]]

logger = get_logger()

# JSX text between a closing '>' (not an arrow '=>') and the next '<', or a
# single-line quoted literal. Template literals with interpolation are not
# candidates. JSX text never contains '=', ';' or a backtick, which keeps
# statements between two elements out of the jsx group.
CANDIDATE_PATTERN = re.compile(
    r'(?<![=\-])>(?P<jsx>[^<>{}=;`]+)<'
    r'|"(?P<dq>(?:[^"\\\n]|\\.)*)"'
    r"|'(?P<sq>(?:[^'\\\n]|\\.)*)'"
    r'|`(?P<bt>(?:[^`\\$\n]|\\.)*)`'
)

ATTRIBUTE_BEFORE_PATTERN = re.compile(r'([\w-]+)\s*=\s*\{?\s*$')

# Attributes whose values are never shown to the user
NON_TEXT_ATTRIBUTES = {
    "className", "class", "id", "key", "href", "src", "type", "name", "variant",
    "style", "ref", "role", "testID", "data-testid", "fg", "bg", "color",
    "backgroundColor", "borderColor", "flexDirection", "alignItems",
    "justifyContent", "position", "mode", "language", "filetype",
}

SKIPPED_LINE_PREFIXES = ("import ", "import{", "export * from", "//", "/*", "*")

CJK_PATTERN = re.compile(r'[\u3000-\u303f\u3400-\u4dbf\u4e00-\u9fff\uff00-\uffef]')
LATIN_PATTERN = re.compile(r'[A-Za-z]')
CAMEL_OR_LOWER_WORD = re.compile(r'^[a-z][A-Za-z0-9]*$')
PASCAL_COMPOUND = re.compile(r'^[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)+$')
SYMBOL_TOKEN = re.compile(r'^[\w$-]+$')
DOTTED_NAME = re.compile(r'^[\w$]+(?:\.[\w$]+)+$')
HEX_COLOR = re.compile(r'^#[0-9a-fA-F]{3,8}$')
PATH_LIKE = re.compile(r'^[\w.@~-]*/[\w./@*-]*$')
CSS_TOKEN = re.compile(r'^[a-z0-9:/\[\]._-]+$')
CODE_MARKERS = ("&&", "||", "==", "=>", "!=", "?.", "();")
FUNCTION_CALL = re.compile(r'[A-Za-z_$][\w$]*\(')


def _strip_code_lines(content: str) -> str:
    kept = []
    for line in content.split("\n"):
        stripped = line.strip()
        if stripped.startswith(SKIPPED_LINE_PREFIXES) or "require(" in stripped:
            kept.append("")
        else:
            kept.append(line)
    return "\n".join(kept)


def _is_css_class_list(text: str) -> bool:
    tokens = text.split()
    if not tokens or any(not CSS_TOKEN.match(token) for token in tokens):
        return False
    return any('-' in token or ':' in token for token in tokens)


def is_user_facing(text: str) -> bool:
    """Return True if ``text`` plausibly is text shown to a user."""
    text = text.strip()
    if len(text) < 2:
        return False
    if not LATIN_PATTERN.search(text) or CJK_PATTERN.search(text):
        return False
    if "://" in text or text.startswith(("./", "../", "/", "@/", "~/")):
        return False
    if not (text[0].isalnum() or text[0] in "\"'([") or any(marker in text for marker in CODE_MARKERS):
        return False
    if FUNCTION_CALL.search(text):
        return False
    if ' ' not in text:
        if (CAMEL_OR_LOWER_WORD.match(text) or PASCAL_COMPOUND.match(text)
                or DOTTED_NAME.match(text) or HEX_COLOR.match(text) or PATH_LIKE.match(text)):
            return False
        if SYMBOL_TOKEN.match(text) and ('_' in text or '-' in text):
            return False
    if _is_css_class_list(text):
        return False
    return text[0].isupper() or ' ' in text


def extract_candidates(content: str) -> List[str]:
    """
    Collect user-facing fragments from source ``content`` in discovery order.

    Fragments are returned exactly as they appear in the file (surrounding
    whitespace removed) and without duplicates.
    """
    content = _strip_code_lines(content.replace("\r\n", "\n"))
    seen: Set[str] = set()
    candidates: List[str] = []

    for match in CANDIDATE_PATTERN.finditer(content):
        if match.group('jsx') is not None:
            fragments = [line.strip() for line in match.group('jsx').split("\n")]
        else:
            attribute = ATTRIBUTE_BEFORE_PATTERN.search(content[max(0, match.start() - 40):match.start()])
            if attribute and attribute.group(1) in NON_TEXT_ATTRIBUTES:
                continue
            literal = next(g for g in (match.group('dq'), match.group('sq'), match.group('bt')) if g is not None)
            fragments = [literal.strip()]

        for fragment in fragments:
            if fragment and fragment not in seen and is_user_facing(fragment):
                seen.add(fragment)
                candidates.append(fragment)

    return candidates


def is_covered(fragment: str, replacements: Dict[str, str]) -> bool:
    """
    A fragment is covered when it is a configured key or already a translation.

    JSX text spanning several lines is extracted line by line, so each line of
    a multi-line key counts as that key.
    """
    if fragment in replacements:
        return True
    for original, translated in replacements.items():
        if fragment == translated:
            return True
        if "\n" in original and fragment in (line.strip() for line in original.split("\n")):
            return True
    return False


def _normalize(paths: Optional[Iterable[str]]) -> Optional[Set[str]]:
    if paths is None:
        return None
    return {os.path.normcase(os.path.abspath(p)) for p in paths}


class Scanner:
    """Finds configured files with untranslated text and files with no record at all."""

    def __init__(self, config: AppConfig, store: Optional[ConfigStore] = None):
        self.config = config
        self.store = store or ConfigStore(config)

    def scan_record(self, record: TranslationRecord) -> List[str]:
        """
        Untranslated fragments in the record's live source file.

        A missing source file is skipped (upstream may have removed it).
        """
        if not record.file:
            return []
        source_path = self.config.resolve_source_file(record.file)
        if not os.path.isfile(source_path):
            logger.debug("Source file for '%s' not found, skipping: %s", record.label, source_path)
            return []
        with open(source_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return [fragment for fragment in extract_candidates(content)
                if not is_covered(fragment, record.replacements)]

    def scan_all_files(
            self,
            collection: Optional[ConfigCollection] = None,
            restrict_to: Optional[Iterable[str]] = None
    ) -> ScanResult:
        """
        Map each configured source file to its untranslated fragments.

        Args:
            collection: Records to scan; loaded from the store when omitted.
            restrict_to: Absolute source paths; other files are ignored.

        Returns:
            Files with at least one untranslated fragment, in record order.
        """
        collection = collection if collection is not None else self.store.load_all()
        allowed = _normalize(restrict_to)
        result: ScanResult = {}

        for record in collection:
            if not record.file:
                continue
            source_path = os.path.normcase(os.path.abspath(self.config.resolve_source_file(record.file)))
            if allowed is not None and source_path not in allowed:
                continue
            fragments = self.scan_record(record)
            if not fragments:
                continue
            existing = result.setdefault(record.file, [])
            existing.extend(f for f in fragments if f not in existing)

        return result

    def list_source_files(self) -> List[str]:
        """Eligible source files, relative to the package directory (e.g. ``src/cli/app.tsx``)."""
        src_root = self.config.package_src_root
        if not os.path.isdir(src_root):
            return []
        extensions = tuple(self.config.scan_extensions)
        files = []
        for dirpath, dirnames, filenames in os.walk(src_root):
            dirnames[:] = sorted(d for d in dirnames if d != "node_modules" and not d.startswith('.'))
            for filename in sorted(filenames):
                if filename.endswith(extensions):
                    full_path = os.path.join(dirpath, filename)
                    files.append(os.path.relpath(full_path, self.config.package_root).replace(os.sep, "/"))
        return files

    def detect_new_files(
            self,
            collection: Optional[ConfigCollection] = None,
            restrict_to: Optional[Iterable[str]] = None
    ) -> List[str]:
        """Eligible source files that no record points to."""
        collection = collection if collection is not None else self.store.load_all()
        configured = {self.config.package_relative(f) for f in collection.configured_files()}
        allowed = _normalize(restrict_to)

        new_files = []
        for relative_path in self.list_source_files():
            if relative_path in configured:
                continue
            if allowed is not None:
                full_path = os.path.normcase(os.path.abspath(self.config.resolve_source_file(relative_path)))
                if full_path not in allowed:
                    continue
            new_files.append(relative_path)
        return new_files


def count_fragments(scan: ScanResult) -> int:
    return sum(len(fragments) for fragments in scan.values())
