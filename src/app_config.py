"""Application configuration for the localization pipeline."""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

import yaml
from dotenv import load_dotenv
from openai import AsyncOpenAI

from src.logging_config import setup_logger

DEFAULT_PACKAGE_DIR = "packages/opencode"
DEFAULT_CRITICAL_FILES = [
    "src/cli/cmd/tui/app.tsx",
    "src/cli/cmd/tui/routes/session/index.tsx",
    "src/cli/cmd/tui/routes/session/footer.tsx",
]


@dataclass
class AppConfig:
    """Per-run context shared by every pipeline component."""
    # Core paths
    project_root: str
    source_root: str
    config_root: str
    package_dir: str = DEFAULT_PACKAGE_DIR
    glossary_file_path: Optional[str] = None

    # Scanning
    scan_extensions: List[str] = field(default_factory=lambda: [".tsx", ".jsx"])
    critical_files: List[str] = field(default_factory=lambda: list(DEFAULT_CRITICAL_FILES))

    # Model configuration
    target_language: str = "Simplified Chinese"
    model_name: str = "gpt-4o-mini"
    max_model_tokens: int = 4000
    batch_size: int = 20
    max_concurrent_api_calls: int = 1
    requests_per_minute: int = 60

    # Type checker
    type_checker_path: Optional[str] = None
    type_check_timeout: float = 60.0

    # OpenAI client
    openai_client: Optional[AsyncOpenAI] = None

    @property
    def package_root(self) -> str:
        return os.path.join(self.source_root, self.package_dir)

    @property
    def package_src_root(self) -> str:
        return os.path.join(self.package_root, "src")

    @property
    def packages_prefix(self) -> str:
        """Leading directory that marks a path as already rooted at the source tree."""
        return self.package_dir.split("/", 1)[0] + "/"

    def resolve_source_file(self, relative_path: str) -> str:
        """
        Resolve a record's ``file`` value to an absolute path.

        Paths that do not start with the packages prefix are taken to be
        relative to the package directory.
        """
        relative_path = relative_path.replace("\\", "/")
        if not relative_path.startswith(self.packages_prefix):
            relative_path = f"{self.package_dir}/{relative_path}"
        return os.path.join(self.source_root, *relative_path.split("/"))

    def package_relative(self, relative_path: str) -> str:
        """Strip the package directory from a record's ``file`` value."""
        relative_path = relative_path.replace("\\", "/")
        prefix = self.package_dir.rstrip("/") + "/"
        if relative_path.startswith(prefix):
            return relative_path[len(prefix):]
        return relative_path

    @property
    def type_checker(self) -> str:
        if self.type_checker_path:
            return self.type_checker_path
        return os.path.join(self.source_root, "node_modules", ".bin", "tsc")


def _compute_project_root() -> str:
    """Compute the project root directory."""
    script_real_path = os.path.realpath(__file__)
    script_dir = os.path.dirname(script_real_path)
    return os.path.abspath(os.path.join(script_dir, os.pardir))


def _load_dotenv_files(project_root: str) -> Optional[str]:
    """Load the project root .env file, if any."""
    dotenv_path = os.path.join(project_root, '.env')
    if os.path.exists(dotenv_path):
        load_dotenv(dotenv_path)
        return dotenv_path
    return None


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """Load the YAML configuration file, falling back to defaults on any problem."""
    default_config_path = os.path.join(project_root, 'config.yaml')
    config_file = os.environ.get('I18N_CONFIG_FILE', default_config_path)

    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    config = {}
    try:
        if not os.path.exists(config_file):
            print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
                  file=sys.stderr)
            print(f"Tip: Create a config.yaml file in '{project_root}' or set I18N_CONFIG_FILE environment variable.",
                  file=sys.stderr)
            return config

        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
            if loaded_config is None:
                print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
                      file=sys.stderr)
            elif isinstance(loaded_config, dict):
                config = loaded_config
            else:
                print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
                      file=sys.stderr)

    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}", file=sys.stderr)
        print("Please check your YAML syntax. Using default configuration.", file=sys.stderr)
    except OSError as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}", file=sys.stderr)
        print("Using default configuration.", file=sys.stderr)

    return config


def _setup_logger_from_config(config: Dict[str, Any]) -> logging.Logger:
    """Set up logger based on configuration."""
    log_config = config.get('logging', {}) or {}
    log_level_str = str(log_config.get('log_level', 'INFO')).upper()
    log_file_path = log_config.get('log_file_path', 'logs/i18n.log')
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console)


def _resolve_path(project_root: str, value: str) -> str:
    value = os.path.expanduser(value)
    if os.path.isabs(value):
        return value
    return os.path.abspath(os.path.join(project_root, value))


def _create_openai_client(logger: logging.Logger) -> Optional[AsyncOpenAI]:
    """Create the OpenAI client, or return None when no API key is configured."""
    api_key_from_env = os.environ.get('OPENAI_API_KEY')
    if not api_key_from_env:
        logger.warning("OPENAI_API_KEY is not set; AI translation is disabled for this run.")
        return None

    base_url = os.environ.get('OPENAI_API_BASE') or None
    try:
        client = AsyncOpenAI(api_key=api_key_from_env, base_url=base_url)
        logger.debug("OpenAI client initialized (base_url=%s)", base_url or "default")
        return client
    except Exception as e:
        logger.error("Failed to initialize OpenAI client: %s", e)
        return None


def load_app_config() -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Returns:
        AppConfig: The loaded application configuration.
    """
    project_root = _compute_project_root()

    dotenv_path = _load_dotenv_files(project_root)
    config = _load_yaml_config(project_root)
    logger = _setup_logger_from_config(config)

    if dotenv_path:
        logger.info("Loaded environment variables from: %s", dotenv_path)
    else:
        logger.debug("No .env file found in '%s'. Relying on system environment variables.", project_root)

    source_root = os.environ.get('OPENCODE_DIR') or config.get('source_root', 'opencode-zh-CN')
    config_root = os.environ.get('I18N_DIR') or config.get('config_root', 'opencode-i18n')
    glossary_file_path = config.get('glossary_file_path')

    model_name = os.environ.get('OPENAI_MODEL') or config.get('model_name', 'gpt-4o-mini')
    default_batch_size = config.get('batch_size', 20)
    batch_size = int(os.environ.get('TRANSLATION_BATCH_SIZE', default_batch_size))

    type_checker_path = config.get('type_checker_path')

    return AppConfig(
        project_root=project_root,
        source_root=_resolve_path(project_root, source_root),
        config_root=_resolve_path(project_root, config_root),
        package_dir=config.get('package_dir', DEFAULT_PACKAGE_DIR),
        glossary_file_path=_resolve_path(project_root, glossary_file_path) if glossary_file_path else None,
        scan_extensions=config.get('scan_extensions', ['.tsx', '.jsx']),
        critical_files=config.get('critical_files', list(DEFAULT_CRITICAL_FILES)),
        target_language=config.get('target_language', 'Simplified Chinese'),
        model_name=model_name,
        max_model_tokens=config.get('max_model_tokens', 4000),
        batch_size=batch_size,
        max_concurrent_api_calls=config.get('max_concurrent_api_calls', 1),
        requests_per_minute=config.get('requests_per_minute', 60),
        type_checker_path=_resolve_path(project_root, type_checker_path) if type_checker_path else None,
        type_check_timeout=float(config.get('type_check_timeout', 60)),
        openai_client=_create_openai_client(logger),
    )
