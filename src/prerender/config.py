"""Configuration management for prerender.

Configuration Discovery Precedence (Highest to Lowest Priority):
===============================================================

1. **PRERENDER_CONFIG_DIR Environment Variable** (Highest Priority)
   - Set by CLI or manually: `export PRERENDER_CONFIG_DIR=/path/to/config`
   - Looks for: `${PRERENDER_CONFIG_DIR}/prerender.yaml`
   - Use case: Development, testing, mitmdump subprocesses started by the CLI

2. **~/.prerender Directory** (Fallback)
   - User's home directory default location
   - Looks for: `~/.prerender/prerender.yaml`

The first existing `prerender.yaml` found in this order is used.
If no `prerender.yaml` is found, defaults plus `PRERENDER_*` environment
variables are applied.

Examples:
--------
# prerender.yaml
prerender:
  token: "my-service-token"
  whitelist:
    - "^https://example\\.com/blog/"
  headers_to_exclude:
    - Set-Cookie

# Override single values from the environment
export PRERENDER_TOKEN=my-service-token
export PRERENDER_MITM__PORT=9000
"""

import logging
import os
import re
import threading
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_URL = "http://service.prerender.io/"

DEFAULT_CRAWLER_USER_AGENTS: tuple[str, ...] = (
    "bingbot",
    "baiduspider",
    "facebookexternalhit",
    "twitterbot",
    "yandex",
    "rogerbot",
    "linkedinbot",
    "embedly",
    "bufferbot",
    "quora link preview",
    "showyoubot",
    "outbrain",
)

DEFAULT_EXTENSIONS_TO_IGNORE: tuple[str, ...] = (
    ".js",
    ".css",
    ".less",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".pdf",
    ".doc",
    ".txt",
    ".zip",
    ".mp3",
    ".rar",
    ".exe",
    ".wmv",
    ".avi",
    ".ppt",
    ".mpg",
    ".mpeg",
    ".tif",
    ".wav",
    ".mov",
    ".psd",
    ".ai",
    ".xls",
    ".mp4",
    ".m4a",
    ".swf",
    ".dat",
    ".dmg",
    ".iso",
    ".flv",
    ".m4v",
    ".torrent",
)


class OutboundProxy(BaseModel):
    """HTTP proxy the upstream fetch is routed through."""

    model_config = ConfigDict(frozen=True)

    url: str
    """Proxy host or URL (e.g. 'proxy.internal' or 'http://proxy.internal')"""

    port: int = 80
    """Proxy port, used when the URL carries none"""

    @property
    def address(self) -> str | None:
        """Proxy URL in the form httpx expects, None when no host is set."""
        if not self.url.strip():
            return None
        base = self.url.strip().rstrip("/")
        if "://" not in base:
            base = f"http://{base}"
        if urlsplit(base).port is not None:
            return base
        return f"{base}:{self.port}"


class MitmConfig(BaseModel):
    """Configuration for the mitmproxy reverse proxy."""

    model_config = ConfigDict(frozen=True)

    port: int = 8080
    """Port for mitmdump to listen on"""

    upstream_app: str = "http://localhost:3000"
    """Web application the reverse proxy sits in front of"""

    keep_host_header: bool = True
    """Keep the public Host header so classified URLs carry the public host"""


class PrerenderConfig(BaseSettings):
    """Classification and routing settings, read from prerender.yaml and PRERENDER_* variables.

    Instances are frozen: build one at startup and hand it to every component.
    """

    model_config = SettingsConfigDict(
        env_prefix="PRERENDER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Core settings
    debug: bool = False

    # Rendering service
    service_url: str = DEFAULT_SERVICE_URL
    token: str | None = None
    proxy: OutboundProxy | None = None
    timeout: float = 100.0

    # Classification
    use_default_user_agents: bool = True
    use_default_extensions_to_ignore: bool = True
    crawler_user_agents: list[str] = Field(default_factory=list)
    extensions_to_ignore: list[str] = Field(default_factory=list)
    whitelist: list[re.Pattern[str]] | None = None
    blacklist: list[re.Pattern[str]] | None = None
    intercept_by_default: bool = True

    # Response relay
    headers_to_exclude: list[str] = Field(default_factory=list)

    # URL rewriting
    strip_application_path: bool = False
    application_path: str = "/"

    # Mitmproxy reverse proxy
    mitm: MitmConfig = Field(default_factory=MitmConfig)

    # Path to the prerender.yaml this instance was loaded from
    config_path: Path | None = None

    @field_validator("whitelist", "blacklist", mode="before")
    @classmethod
    def _compile_patterns(cls, value: Any) -> Any:
        """Compile regex strings up front so a bad pattern fails at load time."""
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        compiled = []
        for item in value:
            if isinstance(item, re.Pattern):
                compiled.append(item)
                continue
            try:
                compiled.append(re.compile(item))
            except re.error as e:
                raise ValueError(f"invalid pattern {item!r}: {e}") from e
        return compiled

    @property
    def user_agents(self) -> tuple[str, ...]:
        """Lowercased crawler user-agent substrings (defaults and/or configured)."""
        agents = list(DEFAULT_CRAWLER_USER_AGENTS) if self.use_default_user_agents else []
        agents.extend(self.crawler_user_agents)
        return tuple(agent.lower() for agent in agents if agent)

    @property
    def ignored_extensions(self) -> tuple[str, ...]:
        """Lowercased resource URL substrings (defaults and/or configured)."""
        extensions = list(DEFAULT_EXTENSIONS_TO_IGNORE) if self.use_default_extensions_to_ignore else []
        extensions.extend(self.extensions_to_ignore)
        return tuple(extension.lower() for extension in extensions if extension)

    @property
    def proxy_address(self) -> str | None:
        """Outbound proxy URL, or None when no proxy host is configured."""
        return self.proxy.address if self.proxy else None

    def configure_logging(self) -> None:
        """Apply the debug flag to the prerender logger tree."""
        if not self.debug:
            return
        prerender_logger = logging.getLogger("prerender")
        prerender_logger.setLevel(logging.DEBUG)
        # Ensure prerender loggers have a handler so messages appear under mitmdump
        if not prerender_logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(name)s:%(levelname)s: %(message)s"))
            prerender_logger.addHandler(handler)

    @classmethod
    def from_yaml(cls, yaml_path: Path, **kwargs: Any) -> "PrerenderConfig":
        """Load configuration from a prerender.yaml file.

        Values in the file's `prerender:` section take precedence over
        PRERENDER_* environment variables; explicit kwargs win over both.

        Args:
            yaml_path: Path to the prerender.yaml file
            **kwargs: Field overrides

        Returns:
            PrerenderConfig instance

        Raises:
            ValueError: If the file's `prerender` section is not a mapping
            pydantic.ValidationError: If a field (e.g. a regex pattern) is invalid
        """
        data: dict[str, Any] = {}

        if yaml_path.exists():
            with yaml_path.open() as f:
                document = yaml.safe_load(f) or {}

            section = (document.get("prerender") or {}) if isinstance(document, dict) else None
            if not isinstance(section, dict):
                raise ValueError(f"{yaml_path}: 'prerender' section must be a mapping")
            # A null value leaves the field to PRERENDER_* variables and the default
            data.update({key: value for key, value in section.items() if value is not None})

            # Backwards compatibility: the old field name for strip_application_path
            if "strip_application_name_from_request_url" in data:
                logger.warning(
                    "DEPRECATED: 'strip_application_name_from_request_url' is deprecated, "
                    "use 'strip_application_path' in prerender.yaml"
                )
                legacy = data.pop("strip_application_name_from_request_url")
                data.setdefault("strip_application_path", legacy)

        data.update(kwargs)
        data.setdefault("config_path", yaml_path)
        return cls(**data)


def find_config_file(config_dir: Path | None = None) -> Path | None:
    """Locate prerender.yaml following the discovery precedence.

    Args:
        config_dir: Explicit directory, checked instead of the environment

    Returns:
        Path to an existing prerender.yaml, or None
    """
    candidates: list[Path] = []
    if config_dir is not None:
        candidates.append(config_dir / "prerender.yaml")
    else:
        env_config_dir = os.environ.get("PRERENDER_CONFIG_DIR")
        if env_config_dir:
            candidates.append(Path(env_config_dir) / "prerender.yaml")
        candidates.append(Path.home() / ".prerender" / "prerender.yaml")

    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_config(config_dir: Path | None = None) -> PrerenderConfig:
    """Build a configuration from the discovered prerender.yaml, or from defaults."""
    config_path = find_config_file(config_dir)
    if config_path is None:
        logger.info("No prerender.yaml found, using defaults and PRERENDER_* environment")
        return PrerenderConfig()

    logger.info(f"Loading prerender config from: {config_path}")
    return PrerenderConfig.from_yaml(config_path)


# Global configuration instance
_config_instance: PrerenderConfig | None = None
_config_lock = threading.Lock()


def get_config() -> PrerenderConfig:
    """Get the process-wide configuration instance, loading it on first use."""
    global _config_instance

    if _config_instance is None:
        with _config_lock:
            # Double-check locking pattern
            if _config_instance is None:
                _config_instance = load_config()
                _config_instance.configure_logging()

    return _config_instance


def set_config_instance(config: PrerenderConfig) -> None:
    """Set the global configuration instance (for testing)."""
    global _config_instance
    _config_instance = config


def clear_config_instance() -> None:
    """Clear the global configuration instance (for testing)."""
    global _config_instance
    _config_instance = None
