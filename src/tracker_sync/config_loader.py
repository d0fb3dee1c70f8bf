"""
YAML config discovery and loading for tracker-sync.

Config files are looked up by convention, may pull in other files with
``!include``, and may reference the environment as ``${VAR}`` or
``${VAR:-default}``.  When several files exist, a section defined in a
more specific file (project over global) replaces the whole section from
the less specific one.

Usage:
    from tracker_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config(repo_root)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .paths import TRACKER_DIR

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TRACKER_SYNC_CONFIG"
PROJECT_CONFIG_NAMES = ("config.yml", "config.yaml")
GLOBAL_CONFIG_DIR = Path(".config") / "tracker_sync"

# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------

# ${NAME} or ${NAME:-fallback}; NAME may not contain ':' or '}'.
_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<fallback>.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` / ``${NAME:-fallback}`` references in *value*.

    An unset or empty variable expands to its fallback, or to ``""`` when
    none is given.  Text that does not form a complete reference is kept.
    """

    def expand(match: re.Match) -> str:
        current = os.environ.get(match.group("name"))
        return current if current else (match.group("fallback") or "")

    return _ENV_REF.sub(expand, value)


def _interpolate_tree(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _interpolate_tree(child) for key, child in node.items()}
    if isinstance(node, list):
        return [_interpolate_tree(child) for child in node]
    if isinstance(node, str):
        return interpolate_env_vars(node)
    return node


# ---------------------------------------------------------------------------
# !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``SafeLoader`` that understands ``!include <path>``.

    Registering the tag on this subclass leaves ``yaml.safe_load``
    untouched.  *chain* holds the files currently being loaded, outermost
    first, so an include cycle is reported instead of recursing forever.
    """

    def __init__(self, stream, chain: list[Path]) -> None:
        super().__init__(stream)
        self.chain = chain

    def include(self, node: yaml.ScalarNode) -> Any:
        target = Path(self.construct_scalar(node))
        if not target.is_absolute():
            target = self.chain[-1].parent / target
        target = target.resolve()

        if target in self.chain:
            cycle = " -> ".join(str(p) for p in (*self.chain, target))
            raise ValueError(f"Circular include detected: {cycle}")
        if not target.is_file():
            raise FileNotFoundError(
                f"Include file not found: {target} (referenced from {self.chain[-1]})"
            )
        return load_yaml_file(target, _chain=self.chain)


ConfigLoader.add_constructor("!include", ConfigLoader.include)


def load_yaml_file(path: Path, *, _chain: list[Path] | None = None) -> Any:
    """Parse one YAML file, resolving ``!include`` relative to it."""
    path = Path(path).resolve()
    chain = [*(_chain or []), path]
    with path.open(encoding="utf-8") as stream:
        loader = ConfigLoader(stream, chain)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _project_root(root: Path | None) -> Path:
    return Path(root) if root is not None else Path.cwd()


def discover_config_files(root: Path | None = None) -> list[Path]:
    """Existing config files, most specific first.

    Candidates:
        1. the file named by ``TRACKER_SYNC_CONFIG``
        2. ``<root>/.tracker/config.yml``, then ``config.yaml``
        3. ``~/.config/tracker_sync/config.yml``

    *root* defaults to the current directory.
    """
    explicit = os.environ.get(CONFIG_ENV_VAR)
    project_dir = _project_root(root) / TRACKER_DIR

    candidates = [
        *([Path(explicit).expanduser().resolve()] if explicit else []),
        *(project_dir / name for name in PROJECT_CONFIG_NAMES),
        Path.home() / GLOBAL_CONFIG_DIR / PROJECT_CONFIG_NAMES[0],
    ]
    return [candidate for candidate in candidates if candidate.is_file()]


_STARTER_CONFIG = """\
# tracker-sync configuration
#
# Environment variables take precedence over this file:
#   TRACKER_SYNC_BRANCH, TRACKER_SYNC_REMOTE, TRACKER_SYNC_GIT_TIMEOUT,
#   TRACKER_SYNC_MAX_PUSH_ATTEMPTS, TRACKER_SYNC_AUTO_REPAIR
#
# sync:
#   branch: tracker-sync
#   remote: origin
#   max_push_attempts: 3
#   git_timeout: 60
#   auto_repair: true
#   auto_save_outbox: true
#   import_outbox: true
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path(root: Path | None = None) -> Path:
    """The config file in effect, else where a project config would go.

    Nothing is written; see ``ensure_config()``.
    """
    found = discover_config_files(root)
    if found:
        return found[0]
    return _project_root(root) / TRACKER_DIR / PROJECT_CONFIG_NAMES[0]


def ensure_config(target: Path | None = None, root: Path | None = None) -> Path:
    """Return the config file in effect, writing a commented starter if none.

    Args:
        target: Where to write the starter; defaults to
            ``resolve_config_path(root)``.
        root: Repository root used for discovery.
    """
    found = discover_config_files(root)
    if found:
        logger.debug("Using existing config %s", found[0])
        return found[0]

    path = Path(target) if target is not None else resolve_config_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(root: Path | None = None) -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    The least specific file is applied first; each later file replaces
    whole top-level sections.  ``${VAR}`` references are expanded once,
    after merging.  With no config files the result is ``{}``.

    Raises:
        OSError, ValueError, yaml.YAMLError: If a file cannot be read,
            includes itself, or is not valid YAML.
    """
    files = discover_config_files(root)
    if not files:
        logger.debug("No config files found; using built-in defaults")
        return {}

    sections: dict[str, Any] = {}
    for path in reversed(files):
        try:
            document = load_yaml_file(path)
        except (OSError, ValueError, yaml.YAMLError):
            logger.exception("Could not load config file %s", path)
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
        for name, value in document.items():
            if name in sections:
                logger.debug("Section %r from %s replaces an earlier definition", name, path)
            sections[name] = value

    return _interpolate_tree(sections)
