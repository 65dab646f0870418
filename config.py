#!/usr/bin/env python3
"""
Configuration management for the AI trends pipeline.

This module centralizes configuration loading, validation, and management.
It handles environment variables, the optional YAML secrets file, the
trends.yaml channel/schedule file, and derives the capability set that
tells every other component which integrations are active.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List, Optional
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
from datetime import datetime, timezone
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
    try:
        environ["PYTHONUNBUFFERED"] = "1"
    except Exception:
        pass

    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    sys.stdout.reconfigure(line_buffering=True)
    sys.stderr.reconfigure(line_buffering=True)

    # Third-party SDKs are chatty at INFO; keep them at WARNING unless debugging
    if level != DEBUG:
        for name in ("googleapiclient", "google", "urllib3", "yt_dlp", "httpx", "azure"):
            getLogger(name).setLevel(WARNING)

    return getLogger("TrendsPipeline")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "summarizer", "mailer")

    Returns:
        A logger named "TrendsPipeline.{name}"
    """
    return getLogger(f"TrendsPipeline.{name}")


logger = _setup_global_logger()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_NEWS_FEED_URL = (
    "https://news.google.com/rss/search?q=%EC%9D%B8%EA%B3%B5%EC%A7%80%EB%8A%A5"
    "+OR+AI+OR+ChatGPT+when:7d&hl=ko&gl=KR&ceid=KR:ko"
)
VALID_CATEGORIES = ("korean", "global")


class Capabilities:
    """Which optional integrations are usable in this process.

    Built once at start-up by Config.capabilities(); components branch on these
    flags instead of re-reading the environment.
    """

    FLAGS = ("llm", "audio", "email", "notion", "youtube_api", "news_api")

    def __init__(self, llm: bool = False, audio: bool = False, email: bool = False,
                 notion: bool = False, youtube_api: bool = False, news_api: bool = False):
        self.llm = llm
        self.audio = audio
        self.email = email
        self.notion = notion
        self.youtube_api = youtube_api
        self.news_api = news_api

    def as_dict(self) -> Dict[str, bool]:
        return {flag: bool(getattr(self, flag)) for flag in self.FLAGS}

    def enabled(self) -> List[str]:
        return [flag for flag in self.FLAGS if getattr(self, flag)]

    def __repr__(self) -> str:
        return f"Capabilities({', '.join(self.enabled()) or 'none'})"


class Config:
    """Configuration manager for the AI trends pipeline.

    Loading order:
    1. Environment variables
    2. .env file next to this module (if present)
    3. YAML secrets file (if SECRETS_FILE is set), overriding both
    4. trends.yaml for seed channels, news feed, schedule and thresholds

    Example secrets.yaml format:
    ```yaml
    GEMINI_API_KEY: "..."
    OPENAI_API_KEY: "..."
    GMAIL_USER: "me@gmail.com"
    GMAIL_APP_PASSWORD: "app-password"
    NOTION_TRENDS_API_KEY: "secret_..."
    NOTION_TRENDS_DB_ID: "..."
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()
        self._load_trends_config()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")
        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.0) -> float:
        """Validate and parse a non-negative float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _parse_datetime(self, env_var: str, default: str) -> datetime:
        raw = environ.get(env_var, default)
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            logger.warning(f"Invalid {env_var} value '{raw}', using default {default}")
            parsed = datetime.fromisoformat(default.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        base_dir = path.dirname(path.abspath(__file__))

        # Storage
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "trends.db")
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 10, 1)
        self.MAX_STORED_ROWS = self._validate_positive_int("MAX_STORED_ROWS", 5000, 1)
        self.INITIAL_LOAD_DATE = self._parse_datetime("INITIAL_LOAD_DATE", "2025-07-01T00:00:00Z")

        # HTTP
        self.USER_AGENT = environ.get("USER_AGENT", DEFAULT_USER_AGENT)
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 5)
        self.MAX_RETRIES = self._validate_positive_int("MAX_RETRIES", 3, 0)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 1.0, 0.1)

        # Pacing between sequential upstream calls
        self.SUMMARY_DELAY_SECONDS = self._validate_positive_float("SUMMARY_DELAY_SECONDS", 4.5)
        self.NOTION_DELAY_SECONDS = self._validate_positive_float("NOTION_DELAY_SECONDS", 0.5)
        self.BACKFILL_DELAY_SECONDS = self._validate_positive_float("BACKFILL_DELAY_SECONDS", 1.0)
        self.YOUTUBE_API_DELAY_SECONDS = self._validate_positive_float("YOUTUBE_API_DELAY_SECONDS", 0.1)
        self.AUDIO_POLL_SECONDS = self._validate_positive_float("AUDIO_POLL_SECONDS", 2.0)
        self.AUDIO_POLL_MAX_ATTEMPTS = self._validate_positive_int("AUDIO_POLL_MAX_ATTEMPTS", 90, 1)
        self.TRANSCRIPT_MAX_CHARS = self._validate_positive_int("TRANSCRIPT_MAX_CHARS", 15000, 1000)
        self.AUDIO_TEMP_DIR = environ.get("AUDIO_TEMP_DIR") or None

        # Text LLM (Azure OpenAI, or OpenAI when no Azure endpoint is set)
        self.AZURE_ENDPOINT = environ.get("AZURE_ENDPOINT")
        if self.AZURE_ENDPOINT:
            normalized = self.AZURE_ENDPOINT.strip()
            if normalized.lower().startswith("https://"):
                normalized = normalized[8:]
            elif normalized.lower().startswith("http://"):
                normalized = normalized[7:]
            normalized = normalized.strip("/")
            if normalized != self.AZURE_ENDPOINT:
                logger.info(f"Normalized AZURE_ENDPOINT to '{normalized}'")
            self.AZURE_ENDPOINT = normalized
        self.OPENAI_API_KEY = environ.get("OPENAI_API_KEY")
        self.DEPLOYMENT_NAME = environ.get("DEPLOYMENT_NAME")
        self.OPENAI_API_VERSION = environ.get("OPENAI_API_VERSION")
        self.OPENAI_MODEL = environ.get("OPENAI_MODEL", "gpt-4o-mini")
        self.SUMMARIZER_MAX_RETRIES = self._validate_positive_int("SUMMARIZER_MAX_RETRIES", 3, 0)
        self.SUMMARIZER_RETRY_DELAY_BASE = self._validate_positive_float("SUMMARIZER_RETRY_DELAY_BASE", 1.0, 0.1)

        # Audio LLM
        self.GEMINI_API_KEY = environ.get("GEMINI_API_KEY")
        self.GEMINI_MODEL = environ.get("GEMINI_MODEL", "gemini-2.0-flash")

        # Source APIs
        self.YOUTUBE_API_KEY = environ.get("YOUTUBE_API_KEY")
        self.NEWS_API_KEY = environ.get("NEWS_API_KEY")

        # Email
        self.GMAIL_USER = environ.get("GMAIL_USER")
        self.GMAIL_APP_PASSWORD = environ.get("GMAIL_APP_PASSWORD")
        self.SMTP_HOST = environ.get("SMTP_HOST", "smtp.gmail.com")
        self.SMTP_PORT = self._validate_positive_int("SMTP_PORT", 465, 1)
        self.EMAIL_TO = environ.get("EMAIL_TO") or self.GMAIL_USER

        # Notes database
        self.NOTION_TRENDS_API_KEY = environ.get("NOTION_TRENDS_API_KEY")
        self.NOTION_TRENDS_DB_ID = environ.get("NOTION_TRENDS_DB_ID")

        # HTTP server
        self.SERVER_HOST = environ.get("SERVER_HOST", "0.0.0.0")
        self.SERVER_PORT = self._validate_positive_int("SERVER_PORT", 8080, 1)

        # Scheduler
        self.SCHEDULER_TIMEZONE = environ.get("SCHEDULER_TIMEZONE", "Asia/Seoul")
        self.SCHEDULER_RUN_IMMEDIATELY = environ.get("SCHEDULER_RUN_IMMEDIATELY", "false").lower() == "true"

        # File paths
        self.TRENDS_CONFIG_PATH = environ.get("TRENDS_CONFIG_PATH", path.join(base_dir, "trends.yaml"))
        self.PROMPT_CONFIG_PATH = path.join(base_dir, "prompt.yaml")
        self.TEMPLATES_DIR = path.join(base_dir, "templates")

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Supports a top-level mapping or a mapping nested under `environment:`.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.info("SECRETS_FILE not set; relying on environment/.env for secrets")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not secrets_config:
            return
        if not isinstance(secrets_config, dict):
            logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config.get('environment') if isinstance(secrets_config.get('environment'), dict) else secrets_config
        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")
        logger.info(f"Successfully loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Returns:
            Parsed YAML or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except Exception as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_trends_config(self) -> None:
        """Populate seed channels, news feed settings and thresholds from trends.yaml.

        Any failure results in empty seeds and default news/threshold values.
        """
        self.SEED_CHANNELS: List[Dict[str, str]] = []
        self.NEWS_FEED_URL = DEFAULT_NEWS_FEED_URL
        self.NEWS_FEED_LIMIT = 50
        self.DAILY_SUMMARY_LIMIT = 20
        self.NOTION_SYNC_LIMIT = 50

        data = self._safe_read_yaml(self.TRENDS_CONFIG_PATH, 5 * 1024 * 1024, 'trends')
        if not isinstance(data, dict):
            return

        channels_section = data.get('channels')
        if isinstance(channels_section, list):
            for entry in channels_section:
                if not isinstance(entry, dict):
                    logger.warning(f"Skipping invalid channel entry: {entry}")
                    continue
                channel_id = str(entry.get('channel_id') or '').strip()
                name = str(entry.get('name') or '').strip()
                category = str(entry.get('category') or '').strip()
                if not channel_id or not name or category not in VALID_CATEGORIES:
                    logger.warning(f"Skipping incomplete channel entry: {entry}")
                    continue
                self.SEED_CHANNELS.append({'channel_id': channel_id, 'name': name, 'category': category})
        logger.info(f"Loaded {len(self.SEED_CHANNELS)} seed channels from {self.TRENDS_CONFIG_PATH}")

        news_section = data.get('news')
        if isinstance(news_section, dict):
            url = news_section.get('url')
            if isinstance(url, str) and url.strip():
                self.NEWS_FEED_URL = url.strip()
            self.NEWS_FEED_LIMIT = self._yaml_int(news_section, 'limit', self.NEWS_FEED_LIMIT)

        thresholds = data.get('thresholds')
        if isinstance(thresholds, dict):
            self.DAILY_SUMMARY_LIMIT = self._yaml_int(thresholds, 'daily_summary_limit', self.DAILY_SUMMARY_LIMIT)
            self.NOTION_SYNC_LIMIT = self._yaml_int(thresholds, 'notion_sync_limit', self.NOTION_SYNC_LIMIT)

    def _yaml_int(self, section: Dict[str, Any], key: str, default: int) -> int:
        raw = section.get(key)
        if raw is None:
            return default
        try:
            value = int(str(raw).strip())
            if value >= 1:
                return value
            logger.warning(f"{key} must be >=1; keeping default {default} (got {raw})")
        except ValueError:
            logger.warning(f"Invalid {key} value '{raw}' in trends.yaml; using default {default}")
        return default

    def has_text_llm(self) -> bool:
        if self.AZURE_ENDPOINT:
            return bool(self.OPENAI_API_KEY and self.OPENAI_API_VERSION and self.DEPLOYMENT_NAME)
        return bool(self.OPENAI_API_KEY)

    def capabilities(self) -> Capabilities:
        """Validate integration settings once and return the capability set."""
        caps = Capabilities(
            llm=self.has_text_llm(),
            audio=bool(self.GEMINI_API_KEY),
            email=bool(self.GMAIL_USER and self.GMAIL_APP_PASSWORD),
            notion=bool(self.NOTION_TRENDS_API_KEY and self.NOTION_TRENDS_DB_ID),
            youtube_api=bool(self.YOUTUBE_API_KEY),
            news_api=bool(self.NEWS_API_KEY),
        )
        if self.AZURE_ENDPOINT and not caps.llm:
            logger.warning("AZURE_ENDPOINT is set but OPENAI_API_KEY/OPENAI_API_VERSION/DEPLOYMENT_NAME are incomplete")
        if bool(self.GMAIL_USER) != bool(self.GMAIL_APP_PASSWORD):
            logger.warning("Only one of GMAIL_USER/GMAIL_APP_PASSWORD is set; email digest disabled")
        if bool(self.NOTION_TRENDS_API_KEY) != bool(self.NOTION_TRENDS_DB_ID):
            logger.warning("Only one of NOTION_TRENDS_API_KEY/NOTION_TRENDS_DB_ID is set; notes sync disabled")
        logger.info(f"Capabilities: {caps}")
        return caps


# Global configuration instance
config = Config()
