"""Runtime configuration for scaffold-sync.

Reads release source and update settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    SCAFFOLD_SYNC_SOURCE_URL: Release index URL (one source is required)
    SCAFFOLD_SYNC_SOURCE_DIR: Local directory of releases
    SCAFFOLD_SYNC_TOKEN: Bearer token for the release index (optional)
    SCAFFOLD_SYNC_INSECURE: Skip SSL verification (optional, default: false)
    SCAFFOLD_SYNC_BACKUP_RETENTION: Snapshots kept without asking (default: 5)
    SCAFFOLD_SYNC_CONFLICT_THRESHOLD: Inline marker line limit (default: 100)
    SCAFFOLD_SYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class Config:
    source_url: str | None = None
    source_dir: str | None = None
    token: str | None = None
    insecure: bool = False
    debug: bool = False
    timeout: float = 60.0
    request_interval: float = 0.0
    state_dir: str = ".scaffold_sync"
    backup_dir: str | None = None
    backup_retention: int = 5
    conflict_line_threshold: int = 100


def validate_config(config: Config, require_source: bool = True) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.
        require_source: Whether a release source must be configured
            (commands that only touch local state do not need one).

    Raises:
        ValueError: If no release source is set, both are set, or the URL
            is malformed.
    """
    if config.source_url and config.source_dir:
        raise ValueError(
            "Both a release URL and a release directory are configured; "
            "use only one of --source-url / --source-dir."
        )
    if require_source and not config.source_url and not config.source_dir:
        raise ValueError(
            "No release source configured. Set SCAFFOLD_SYNC_SOURCE_URL or "
            "SCAFFOLD_SYNC_SOURCE_DIR, pass --source-url / --source-dir, or "
            "add 'source' to config.yml."
        )

    if config.source_url:
        config.source_url = config.source_url.strip()
        if not config.source_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid release URL '{config.source_url}': must start with http:// or https://"
            )
        parsed = urlparse(config.source_url)
        if not parsed.hostname:
            raise ValueError(
                f"Invalid release URL '{config.source_url}': URL must include a hostname"
            )
        config.source_url = config.source_url.removesuffix("/")

    if config.backup_retention < 1:
        raise ValueError(
            f"Invalid backup retention {config.backup_retention}: must be at least 1"
        )
    if config.conflict_line_threshold < 1:
        raise ValueError(
            f"Invalid conflict line threshold {config.conflict_line_threshold}: "
            "must be at least 1"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, low: int, high: int) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    source_url: str | None = None,
    source_dir: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
    update_fallbacks: dict | None = None,
    require_source: bool = True,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        source_url: Override release index URL.
        source_dir: Override local release directory.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Values from the YAML ``source`` section.
        update_fallbacks: Values from the YAML ``update`` section.
        require_source: Passed to ``validate_config()``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If no usable release source is configured or a value
            is out of range.
    """
    fb = yaml_fallbacks or {}
    ufb = update_fallbacks or {}

    # --- Source: a CLI arg for either kind wins over every other layer ---

    if source_url or source_dir:
        final_url, final_dir = source_url, source_dir
    else:
        final_url = os.getenv("SCAFFOLD_SYNC_SOURCE_URL")
        final_dir = os.getenv("SCAFFOLD_SYNC_SOURCE_DIR")
        if not final_url and not final_dir:
            final_url = fb.get("url")
            final_dir = fb.get("directory")

    token = os.getenv("SCAFFOLD_SYNC_TOKEN") or fb.get("token")

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("SCAFFOLD_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        final_debug = bool(_get_bool_env("SCAFFOLD_SYNC_DEBUG"))

    # --- Numeric fields: env > YAML > default ---

    retention = _get_int_env("SCAFFOLD_SYNC_BACKUP_RETENTION", 1, 1000)
    if retention is None:
        retention = int(ufb.get("backup_retention", 5))

    threshold = _get_int_env("SCAFFOLD_SYNC_CONFLICT_THRESHOLD", 1, 1_000_000)
    if threshold is None:
        threshold = int(ufb.get("conflict_line_threshold", 100))

    config = Config(
        source_url=final_url,
        source_dir=final_dir,
        token=token,
        insecure=final_insecure,
        debug=final_debug,
        timeout=float(fb.get("timeout", 60.0)),
        request_interval=float(fb.get("request_interval", 0.0)),
        state_dir=ufb.get("state_dir") or ".scaffold_sync",
        backup_dir=ufb.get("backup_dir"),
        backup_retention=retention,
        conflict_line_threshold=threshold,
    )

    validate_config(config, require_source)

    return config
