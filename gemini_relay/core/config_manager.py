import yaml
import os
import asyncio
from dataclasses import dataclass, replace
from typing import Dict, Any, Mapping, Optional
from .logging import logger


DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


@dataclass(frozen=True)
class RelaySettings:
    """Immutable snapshot of the relay configuration."""
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    default_model: str = "gemini-2.0-flash"
    # Full generation may take minutes; the title flow is user-visible
    generation_timeout: float = 300.0
    title_timeout: float = 60.0
    max_stream_lines: int = 10000
    title_max_length: int = 100
    stream_queue_size: int = 64

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def __repr__(self) -> str:
        masked = "***" if self.api_key else None
        return (
            f"RelaySettings(api_key={masked!r}, base_url={self.base_url!r}, "
            f"default_model={self.default_model!r}, generation_timeout={self.generation_timeout}, "
            f"title_timeout={self.title_timeout}, max_stream_lines={self.max_stream_lines}, "
            f"title_max_length={self.title_max_length}, stream_queue_size={self.stream_queue_size})"
        )


_NUMERIC_FIELDS = {
    "generation_timeout": float,
    "title_timeout": float,
    "max_stream_lines": int,
    "title_max_length": int,
    "stream_queue_size": int,
}


class ConfigManager:
    def __init__(self, config_dir: str = "config", environ: Optional[Mapping[str, str]] = None):
        self.config_dir = config_dir
        self.relay_path = os.path.join(config_dir, "relay.yaml")
        self.environ = environ if environ is not None else os.environ
        self.config = self._load_config()
        self.last_mtimes = {}
        self._initialize_mtimes()

        self.log_level = self.environ.get("LOG_LEVEL", "INFO")

        logger.info("Configuration manager initialized", config_dir=config_dir,
                    log_level=self.log_level,
                    relay_config_exists=os.path.exists(self.relay_path),
                    credential_configured=self.get_settings().has_credential)

    def _load_config(self) -> Dict[str, Any]:
        config = {}
        try:
            with open(self.relay_path, 'r') as f:
                config['relay'] = (yaml.safe_load(f) or {}).get('relay', {}) or {}
        except FileNotFoundError as e:
            logger.warning(f"Configuration file not found: {e.filename}, using defaults",
                           error_type="file_not_found")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML file: {e}", error_type="yaml_parse_error")
        return config

    def get_settings(self) -> RelaySettings:
        """Build settings from relay.yaml, then apply environment overrides."""
        relay_config = self.config.get("relay", {})
        settings = RelaySettings()

        overrides = {}
        for field_name, cast in _NUMERIC_FIELDS.items():
            if field_name in relay_config:
                try:
                    overrides[field_name] = cast(relay_config[field_name])
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring invalid value for relay.{field_name}: {relay_config[field_name]!r}")
        if relay_config.get("base_url"):
            overrides["base_url"] = str(relay_config["base_url"]).rstrip("/")
        if relay_config.get("default_model"):
            overrides["default_model"] = str(relay_config["default_model"])

        # Секрет берется только из окружения, никогда из yaml
        overrides["api_key"] = self.environ.get("GEMINI_API_KEY") or None
        if self.environ.get("GEMINI_BASE_URL"):
            overrides["base_url"] = self.environ["GEMINI_BASE_URL"].rstrip("/")

        return replace(settings, **overrides)

    def reload_config(self):
        logger.info("Reloading configuration", config_dir=self.config_dir)
        self.config = self._load_config()
        logger.info("Configuration reloaded", relay_keys=sorted(self.config.get("relay", {}).keys()))

    def _initialize_mtimes(self):
        try:
            self.last_mtimes[self.relay_path] = os.path.getmtime(self.relay_path)
        except FileNotFoundError:
            pass

    def _config_changed(self) -> bool:
        try:
            mtime = os.path.getmtime(self.relay_path)
        except FileNotFoundError:
            return False
        if self.last_mtimes.get(self.relay_path, 0) < mtime:
            self.last_mtimes[self.relay_path] = mtime
            return True
        return False

    async def _reload_config_task(self, interval: float = 5.0):
        while True:
            if self._config_changed():
                logger.debug("Configuration file changed, triggering reload", changed_file=self.relay_path)
                self.reload_config()
            await asyncio.sleep(interval)

    def start_reloader_task(self) -> asyncio.Task:
        return asyncio.create_task(self._reload_config_task())
