"""Sync configuration resolved from arguments, environment and YAML.

Precedence (highest to lowest):
    Explicit args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    TRACKER_SYNC_BRANCH: Sync branch name (default: tracker-sync)
    TRACKER_SYNC_REMOTE: Remote name (default: origin)
    TRACKER_SYNC_GIT_TIMEOUT: Seconds per git command (default: 60)
    TRACKER_SYNC_MAX_PUSH_ATTEMPTS: Push attempts on rejection (default: 3)
    TRACKER_SYNC_AUTO_REPAIR: Repair unhealthy worktrees during sync (default: true)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .config_loader import load_hierarchical_config
from .config_schema import SyncSettings, build_config
from .logger import setup_logging
from .paths import DEFAULT_REMOTE, SYNC_BRANCH
from .validators import validate_branch_name, validate_remote_name

logger = logging.getLogger(__name__)


@dataclass
class Config:
    branch: str = SYNC_BRANCH
    remote: str = DEFAULT_REMOTE
    git_timeout: float = 60
    max_push_attempts: int = 3
    auto_repair: bool = True
    auto_save_outbox: bool = True
    import_outbox: bool = True

    def to_settings(self) -> SyncSettings:
        return SyncSettings(
            branch=self.branch,
            remote=self.remote,
            git_timeout=self.git_timeout,
            max_push_attempts=self.max_push_attempts,
            auto_repair=self.auto_repair,
            auto_save_outbox=self.auto_save_outbox,
            import_outbox=self.import_outbox,
        )


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a name is invalid or a number is out of range.
    """
    config.branch = config.branch.strip()
    config.remote = config.remote.strip()

    for validator, value in (
        (validate_branch_name, config.branch),
        (validate_remote_name, config.remote),
    ):
        is_valid, message = validator(value)
        if not is_valid:
            raise ValueError(message)

    if not (1 <= config.git_timeout <= 3600):
        raise ValueError(
            f"Invalid git timeout '{config.git_timeout}': must be between 1 and 3600 seconds"
        )

    if not (1 <= config.max_push_attempts <= 10):
        raise ValueError(
            f"Invalid max push attempts '{config.max_push_attempts}': must be between 1 and 10"
        )

    if not config.auto_repair:
        logger.debug("Automatic worktree repair disabled")


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_number_env(key: str, kind: type, low: float, high: float) -> float | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = kind(raw)
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
    branch: str | None = None,
    remote: str | None = None,
    git_timeout: float | None = None,
    max_push_attempts: int | None = None,
    auto_repair: bool | None = None,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        explicit arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        branch: Override sync branch.
        remote: Override remote name.
        git_timeout: Override git command timeout (seconds).
        max_push_attempts: Override push attempts.
        auto_repair: Override automatic worktree repair.
        yaml_fallbacks: Values from the YAML ``sync`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If any resolved value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields ---

    final_branch = branch or os.getenv("TRACKER_SYNC_BRANCH") or fb.get("branch") or SYNC_BRANCH
    final_remote = remote or os.getenv("TRACKER_SYNC_REMOTE") or fb.get("remote") or DEFAULT_REMOTE

    # --- Numeric fields ---

    final_timeout = git_timeout
    if final_timeout is None:
        final_timeout = _get_number_env("TRACKER_SYNC_GIT_TIMEOUT", float, 1, 3600)
    if final_timeout is None:
        final_timeout = float(fb.get("git_timeout", 60))

    final_attempts = max_push_attempts
    if final_attempts is None:
        final_attempts = _get_number_env("TRACKER_SYNC_MAX_PUSH_ATTEMPTS", int, 1, 10)
    if final_attempts is None:
        final_attempts = int(fb.get("max_push_attempts", 3))

    # --- Boolean fields ---

    final_repair = auto_repair
    if final_repair is None:
        final_repair = _get_bool_env("TRACKER_SYNC_AUTO_REPAIR")
    if final_repair is None:
        final_repair = bool(fb.get("auto_repair", True))

    config = Config(
        branch=final_branch,
        remote=final_remote,
        git_timeout=final_timeout,
        max_push_attempts=int(final_attempts),
        auto_repair=final_repair,
        auto_save_outbox=bool(fb.get("auto_save_outbox", True)),
        import_outbox=bool(fb.get("import_outbox", True)),
    )

    validate_config(config)

    return config


def load_settings(root: Path, **overrides) -> SyncSettings:
    """Resolve ``SyncSettings`` for the repository at *root*.

    Loads ``<root>/.env`` (without overriding variables already set), then
    the hierarchical YAML config, then applies *overrides* as explicit
    arguments to ``load_config()``.
    """
    load_dotenv(Path(root) / ".env", override=False)
    unified = build_config(load_hierarchical_config(root))
    yaml_sync = unified.sync.model_dump(exclude_unset=True)
    return load_config(yaml_fallbacks=yaml_sync, **overrides).to_settings()


def configure_logging(root: Path, debug: bool = False) -> None:
    """Apply the ``logging`` config section for the repository at *root*."""
    load_dotenv(Path(root) / ".env", override=False)
    section = build_config(load_hierarchical_config(root)).logging
    setup_logging(
        debug=debug,
        log_file=section.file,
        log_format=section.format,
        level=section.level,
    )
