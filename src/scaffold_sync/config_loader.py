"""
Layered YAML configuration for scaffold-sync.

Config files are found by convention (``--config``, ``SCAFFOLD_SYNC_CONFIG``,
the current project's ``.scaffold_sync`` directory, then the user's XDG
config directory), loaded with ``!include`` support, merged section by
section with the nearest file winning, and finally expanded with
``${VAR}`` / ``${VAR:-default}`` environment references.

Usage:
    from scaffold_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config(Path("sync.yml"))
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterator

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SCAFFOLD_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".scaffold_sync"
PROJECT_CONFIG_NAMES = ("config.yml", "config.yaml")
USER_CONFIG_PATH = Path(".config") / "scaffold_sync" / "config.yml"

# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    there is none.  A ``${`` without a closing brace is kept as written.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m["name"]) or m["default"] or "", value
    )


def _interpolate_recursive(obj: Any) -> Any:
    """Expand environment references in every string of a parsed document."""
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


# ---------------------------------------------------------------------------
# !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """Safe YAML loader that understands ``!include other.yml``.

    Registered on this subclass only; ``yaml.safe_load`` keeps rejecting
    the tag.
    """

    include_chain: tuple[Path, ...] = ()


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by an ``!include`` node, relative to its parent."""
    including_file = Path(loader.name).resolve()
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = including_file.parent / target
    target = target.resolve()

    if target in loader.include_chain:
        chain = [*loader.include_chain, target]
        raise ValueError(
            "Circular include detected: " + " -> ".join(map(str, chain))
        )
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {including_file})"
        )
    return _load_yaml_with_includes(
        target, _include_stack=[*loader.include_chain, target]
    )


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader.include_chain = tuple(_include_stack or [path])
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _candidate_paths() -> Iterator[Path]:
    """Conventional config locations, nearest first."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        yield Path(env_path).expanduser().resolve()
    project_dir = Path.cwd() / PROJECT_CONFIG_DIR
    for name in PROJECT_CONFIG_NAMES:
        yield project_dir / name
    yield Path.home() / USER_CONFIG_PATH


def discover_config_files(explicit: Path | None = None) -> list[Path]:
    """Return the config files to load, highest precedence first.

    Order: *explicit* (``--config``), ``$SCAFFOLD_SYNC_CONFIG``,
    ``./.scaffold_sync/config.yml``, ``./.scaffold_sync/config.yaml``,
    ``~/.config/scaffold_sync/config.yml``.  Conventional locations that do
    not exist are skipped.

    Raises:
        FileNotFoundError: If *explicit* is given but does not exist.
    """
    found: list[Path] = []
    if explicit is not None:
        explicit = explicit.expanduser().resolve()
        if not explicit.exists():
            raise FileNotFoundError(f"Config file not found: {explicit}")
        found.append(explicit)

    for path in _candidate_paths():
        if path.exists() and path not in found:
            found.append(path)
    return found


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(explicit: Path | None = None) -> dict[str, Any]:
    """Load every discovered config file and merge them into one dict.

    Files are applied from lowest to highest precedence; a top-level
    section in a nearer file replaces the same section from a farther one
    as a whole.  Environment references are expanded after merging.

    Returns:
        The merged configuration, ``{}`` when no file exists.
    """
    paths = discover_config_files(explicit)
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            document = _load_yaml_with_includes(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.error("Cannot load config file %s: %s", path, exc)
            raise

        if document is None:
            continue
        if not isinstance(document, dict):
            logger.warning(
                "Ignoring config file %s: top level is a %s, not a mapping",
                path,
                type(document).__name__,
            )
            continue
        merged.update(document)

    return _interpolate_recursive(merged)
