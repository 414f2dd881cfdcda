"""
Hierarchical configuration loader for brew-sync.

Finds config files by convention, supports ``!include`` in YAML and
``${VAR}`` / ``${VAR:-default}`` env var interpolation, and merges files
with "project wins" semantics.

Usage:
    from brew_sync.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BREW_SYNC_CONFIG"
CONFIG_DIR_NAME = ".brew_sync"
CONFIG_FILE_NAME = "config.yml"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` in *value*.

    Unset and empty variables become the default, or ``""`` when there is
    none.  A ``${`` without a closing brace is left as is.
    """

    def _substitute(match: re.Match) -> str:
        current = os.environ.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_substitute, value)


def _interpolate_tree(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, list):
        return [_interpolate_tree(item) for item in node]
    if isinstance(node, dict):
        return {key: _interpolate_tree(val) for key, val in node.items()}
    return node


# ---------------------------------------------------------------------------
# 2. YAML with !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``SafeLoader`` subclass that understands ``!include``.

    Registering the constructor on a subclass leaves the global
    ``yaml.SafeLoader`` untouched.
    """


def _construct_include(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by ``!include path`` (relative to the includer)."""
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_chain", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return _load_yaml(target, chain=[*chain, target])


ConfigLoader.add_constructor("!include", _construct_include)


def _load_yaml(path: Path, chain: list[Path] | None = None) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_chain = chain or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``BREW_SYNC_CONFIG`` env var (explicit path)
        2. ``.brew_sync/config.yml`` in CWD (project-level)
        3. ``~/.config/brew_sync/config.yml`` (XDG global)
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    candidates.append(Path.cwd() / CONFIG_DIR_NAME / CONFIG_FILE_NAME)
    candidates.append(
        Path.home() / ".config" / "brew_sync" / CONFIG_FILE_NAME
    )

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# brew-sync configuration
#
# Remote settings can also come from environment variables (or a .env file):
#   BREW_SYNC_BACKEND, BREW_SYNC_URL, BREW_SYNC_USERNAME, BREW_SYNC_PASSWORD,
#   BREW_SYNC_BUCKET, BREW_SYNC_REGION, BREW_SYNC_ENDPOINT,
#   BREW_SYNC_ACCESS_KEY_ID, BREW_SYNC_SECRET_ACCESS_KEY, BREW_SYNC_INSECURE
#
# remote:
#   backend: webdav            # or s3
#   url: https://dav.example.com/remote.php/dav/files/me
#   username: me
#   password: ${WEBDAV_PASSWORD}
#   remote_root: brew-guide
#   # bucket: my-bucket
#   # region: us-east-1
#   # endpoint: https://minio.example.com
#
# sync:
#   local_root: data
#   state_dir: .brew_sync/state
#   conflict_strategy: manual  # local-wins | remote-wins | newest-wins | manual
#   direction: full  # full | upload | download
#   include: []
#   exclude: []
#   max_workers: 4
#   max_backups: 5  # remote copies kept per uploaded document, 0 disables
#   ignore_fields: [exportDate]
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the active config file, or the project-level default path.

    Does not create anything; see ``ensure_config()``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to create the starter file.  Defaults to
            ``resolve_config_path()``.

    Returns:
        Path to the existing or newly created config file.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


# ---------------------------------------------------------------------------
# 4. Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load every discovered config file and merge them.

    Files are applied from lowest to highest precedence; a top-level key in
    a higher-precedence file replaces the whole section from lower ones.
    Env var interpolation runs after the merge.

    Returns an empty dict when no config files exist (zero-config).
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError):
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_tree(merged)
