"""
YAML configuration loading for docsync.

Config files are found by convention, may pull in other files with
``!include``, may reference the environment with ``${VAR}`` or
``${VAR:-default}``, and are merged so that the project file wins over
the global one.  ``DOCSYNC_*`` variables are applied last.

Usage:
    from docsync.config_loader import load_config

    config = load_config()                      # discovered files
    config = load_config(Path("sync.yml"))      # one explicit file
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DOCSYNC_CONFIG"
PROJECT_DIR = ".docsync"

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*?))?\}")

# DOCSYNC_* variable -> (section, field)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DOCSYNC_CONFLICT_POLICY": ("policy", "conflict_policy"),
    "DOCSYNC_SYNC_MOVES": ("policy", "sync_moves"),
    "DOCSYNC_DELETE_HANDLING": ("policy", "delete_handling"),
    "DOCSYNC_ARCHIVE_RETENTION_DAYS": ("policy", "archive_retention_days"),
    "DOCSYNC_CROSS_DOMAIN_POLICY": ("policy", "cross_domain_policy"),
    "DOCSYNC_BACKGROUND_SYNC": ("background", "enabled"),
    "DOCSYNC_POLL_INTERVAL": ("background", "poll_interval"),
}


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` references.

    An unset or empty variable yields its default, or ``""`` without one.
    An unterminated ``${`` is kept as written.
    """

    def _sub(match: re.Match) -> str:
        return os.environ.get(match["name"]) or match["default"] or ""

    return _ENV_REF.sub(_sub, value)


def expand_env_tree(data: Any) -> Any:
    """Apply ``interpolate_env_vars`` to every string in a loaded document."""
    match data:
        case str():
            return interpolate_env_vars(data)
        case dict():
            return {key: expand_env_tree(value) for key, value in data.items()}
        case list():
            return [expand_env_tree(item) for item in data]
        case _:
            return data


class IncludeLoader(yaml.SafeLoader):
    """``SafeLoader`` that understands ``!include <path>``.

    Relative includes resolve against the including file.  ``chain``
    holds the files being loaded so a cycle is reported instead of
    recursing forever.  ``yaml.SafeLoader`` itself is left untouched.
    """

    def __init__(self, stream, chain: tuple[Path, ...] = ()) -> None:
        super().__init__(stream)
        self.chain = chain

    def include(self, node: yaml.ScalarNode) -> Any:
        source = self.chain[-1]
        target = (source.parent / self.construct_scalar(node)).resolve()
        if target in self.chain:
            cycle = " -> ".join(str(p) for p in (*self.chain, target))
            raise ValueError(f"Circular include detected: {cycle}")
        if not target.is_file():
            raise FileNotFoundError(
                f"Include file not found: {target} (referenced from {source})"
            )
        return read_yaml(target, _chain=self.chain)


IncludeLoader.add_constructor("!include", IncludeLoader.include)


def read_yaml(path: Path, *, _chain: tuple[Path, ...] = ()) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = Path(path).resolve()
    with path.open(encoding="utf-8") as fh:
        loader = IncludeLoader(fh, chain=(*_chain, path))
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first.

    Looks at ``$DOCSYNC_CONFIG``, then ``.docsync/config.yml`` and
    ``.docsync/config.yaml`` under the working directory, then
    ``~/.config/docsync/config.yml``.
    """
    candidates: list[Path] = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    project = Path.cwd() / PROJECT_DIR
    candidates += [project / "config.yml", project / "config.yaml"]
    candidates.append(Path.home() / ".config" / "docsync" / "config.yml")
    return [path for path in candidates if path.exists()]


def load_hierarchical_config(paths: list[Path] | None = None) -> dict[str, Any]:
    """Merge config files into one raw dict.

    ``paths`` defaults to ``discover_config_files()`` and is ordered
    highest precedence first.  Top-level sections of a higher file
    replace the same section of a lower one whole.  Returns ``{}`` when
    there is nothing to load.
    """
    if paths is None:
        paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = read_yaml(path)
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring %s: top level is %s, not a mapping",
                path, type(data).__name__,
            )
            continue
        merged.update(data)
    return expand_env_tree(merged)


def apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``raw`` with non-empty ``DOCSYNC_*`` variables applied.

    Values stay strings; ``build_config`` coerces them.
    """
    result = {
        key: dict(value) if isinstance(value, dict) else value
        for key, value in raw.items()
    }
    for env_name, (section, field) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue
        if not isinstance(result.get(section), dict):
            result[section] = {}
        result[section][field] = value
        logger.debug("%s overrides %s.%s", env_name, section, field)
    return result


def load_config(path: Path | None = None) -> UnifiedConfig:
    """Build the effective configuration.

    With ``path`` only that file is read; otherwise discovered files are
    merged.  Precedence, highest first: environment (including a
    ``.env`` file), project YAML, global YAML, defaults.

    Raises:
        ConfigValidationError: The merged configuration is invalid.
        FileNotFoundError: ``path`` or an included file is missing.
    """
    load_dotenv()
    paths = [Path(path)] if path is not None else None
    raw = apply_env_overrides(load_hierarchical_config(paths))
    return build_config(raw)


_STARTER_CONFIG = """\
# docsync configuration
#
# policy:
#   conflict_policy: last-write-wins   # prefer-remote | prefer-local | merge
#   sync_moves: true
#   detect_remote_moves: false
#   delete_handling: archive           # ignore | sync
#   archive_retention_days: 30
#   cross_domain_policy: auto-relink   # skip | warn
#   base_folder: ""
#   exclude:
#     - "templates/*"
#
# background:
#   enabled: false
#   poll_interval: 60
#   debounce: 1.0
#   max_consecutive_failures: 3
#
# retry:
#   max_attempts: 4
#   initial_delay: 1.0
#   max_delay: 30.0
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none.

    ``target`` defaults to ``.docsync/config.yml`` under the working
    directory.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]

    path = target or Path.cwd() / PROJECT_DIR / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path
