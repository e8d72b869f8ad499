"""Runs the TypeScript compiler in type-check-only mode and parses its diagnostics."""
import os
import re
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

from src.app_config import AppConfig
from src.logging_config import get_logger

ERROR_MARKER = "error TS"
DIAGNOSTIC_PATTERN = re.compile(r'([^/\\]+\.tsx?)\((\d+),(\d+)\).*error TS\d+: (.+)')

logger = get_logger()


@dataclass
class Diagnostic:
    file: str
    line: int
    column: int
    message: str

    def __str__(self) -> str:
        return f"{self.file}({self.line},{self.column}): {self.message}"


@dataclass
class TypeCheckResult:
    """Outcome of one type-checker run."""
    error_count: int = 0
    diagnostics: List[Diagnostic] = field(default_factory=list)
    timed_out: bool = False
    not_installed: bool = False
    output: str = ""

    @property
    def passed(self) -> bool:
        return self.error_count == 0 and not self.timed_out and not self.not_installed


def parse_diagnostics(output: str) -> TypeCheckResult:
    """Count ``error TS`` lines and keep the ones with a recognisable file position."""
    result = TypeCheckResult(output=output)
    for line in output.splitlines():
        if ERROR_MARKER not in line:
            continue
        result.error_count += 1
        match = DIAGNOSTIC_PATTERN.search(line)
        if match:
            result.diagnostics.append(Diagnostic(
                file=match.group(1),
                line=int(match.group(2)),
                column=int(match.group(3)),
                message=match.group(4).strip(),
            ))
    return result


class TypeChecker:
    """``tsc --noEmit --skipLibCheck`` over the package directory, bounded by a timeout."""

    def __init__(self, config: AppConfig, executable: Optional[str] = None, timeout: Optional[float] = None):
        self.executable = executable or config.type_checker
        self.cwd = config.package_root
        self.timeout = timeout if timeout is not None else config.type_check_timeout

    def run(self) -> TypeCheckResult:
        if not os.path.isdir(self.cwd):
            logger.warning("Package directory not found, cannot type check: %s", self.cwd)
            return TypeCheckResult(not_installed=True)
        try:
            completed = subprocess.run(
                [self.executable, "--noEmit", "--skipLibCheck"],
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.error("Type check timed out after %.0f seconds", self.timeout)
            return TypeCheckResult(timed_out=True)
        except FileNotFoundError:
            logger.warning("Type checker not found: %s", self.executable)
            return TypeCheckResult(not_installed=True)

        result = parse_diagnostics((completed.stdout or "") + "\n" + (completed.stderr or ""))
        logger.debug("Type checker exited with %d, %d error(s)", completed.returncode, result.error_count)
        return result
