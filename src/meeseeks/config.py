"""Meeseeks configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (MEESEEKS_DB, MEESEEKS_EMBEDDING_MODEL, MEESEEKS_MODEL)
  3. Per-project meeseeks.yaml  (in the working directory)
  4. Global ~/.meeseeks/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from meeseeks.context.limits import ModelTokenLimits

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".meeseeks"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "meeseeks.yaml"
_DEFAULT_DB_PATH: Path = _GLOBAL_CONFIG_DIR / "knowledge.db"

# Fields that suggest an API key are forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or kb_floor.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token"
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret"
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["storage", "crawl", "chunking", "embedding", "retrieval", "context"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StorageCfg:
    """Database location (meeseeks.yaml: storage:)."""

    db_path: str = str(_DEFAULT_DB_PATH)


@dataclass
class CrawlCfg:
    """Crawler limits (meeseeks.yaml: crawl:)."""

    max_depth: int = 2
    max_pages: int = 50
    timeout: float = 10.0
    delay: float = 0.5
    allow_private_hosts: bool = False


@dataclass
class ChunkingCfg:
    """Chunker configuration (meeseeks.yaml: chunking:)."""

    max_chars: int = 500


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (meeseeks.yaml: embedding:).

    Attributes:
        model: ``tfidf`` for the local embedder, or a LiteLLM embedding model
            string (provider/model format).
        batch_size: Chunk texts per embedding call.
    """

    model: str = "tfidf"
    batch_size: int = 32


@dataclass
class RetrievalCfg:
    """Retrieval configuration (meeseeks.yaml: retrieval:)."""

    top_k: int = 5


@dataclass
class ContextCfg:
    """Context budget configuration (meeseeks.yaml: context:).

    Attributes:
        model: Default target model id for ``meeseeks context fit``.
        per_message_overhead: Tokens charged per chat message on top of its content.
        kb_floor: Knowledge base content is never reduced below this many tokens.
        diff_reserve: Tokens held back from the diff budget for the truncation marker.
        diff_floor: A truncated diff keeps at least this many tokens.
        model_limits: Extra or overriding entries for the model limit table.
    """

    model: str = "gpt-4o"
    per_message_overhead: int = 4
    kb_floor: int = 1_000
    diff_reserve: int = 100
    diff_floor: int = 500
    model_limits: dict[str, ModelTokenLimits] = field(default_factory=dict)


@dataclass
class MeeseeksConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    crawl: CrawlCfg = field(default_factory=CrawlCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    context: ContextCfg = field(default_factory=ContextCfg)

    @property
    def db_path(self) -> Path:
        return Path(self.storage.db_path).expanduser()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}', ignored.",
                UserWarning,
                stacklevel=4,
            )


def _number(section: dict[str, Any], key: str, default: Any, kind: type, minimum: float) -> Any:
    """Read ``section[key]`` as *kind*, requiring it to be >= *minimum*."""
    raw = section.get(key, default)
    try:
        value = kind(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be a number, got {raw!r}.") from exc
    if value < minimum:
        raise ConfigError(f"'{key}' must be >= {minimum}, got {value}.")
    return value


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_model_limits(raw: dict[str, Any]) -> dict[str, ModelTokenLimits]:
    limits: dict[str, ModelTokenLimits] = {}
    for model_id, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"context.model_limits.{model_id} must be a mapping.")
        try:
            limits[str(model_id)] = ModelTokenLimits(
                context_window=_number(entry, "context_window", None, int, 1),
                max_output_tokens=_number(entry, "max_output_tokens", 0, int, 0),
                available_for_input=_number(entry, "available_for_input", None, int, 1),
            )
        except ConfigError as exc:
            raise ConfigError(f"context.model_limits.{model_id}: {exc}") from exc
    return limits


def _cfg_from_dict(data: dict[str, Any]) -> MeeseeksConfig:
    """Build a *MeeseeksConfig* from a merged raw YAML dict."""
    cfg = MeeseeksConfig()

    if "storage" in data:
        s = data["storage"] or {}
        cfg.storage = StorageCfg(db_path=str(s.get("db_path", cfg.storage.db_path)))

    if "crawl" in data:
        c = data["crawl"] or {}
        cfg.crawl = CrawlCfg(
            max_depth=_number(c, "max_depth", cfg.crawl.max_depth, int, 0),
            max_pages=_number(c, "max_pages", cfg.crawl.max_pages, int, 1),
            timeout=_number(c, "timeout", cfg.crawl.timeout, float, 0.001),
            delay=_number(c, "delay", cfg.crawl.delay, float, 0),
            allow_private_hosts=bool(c.get("allow_private_hosts", cfg.crawl.allow_private_hosts)),
        )

    if "chunking" in data:
        ch = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            max_chars=_number(ch, "max_chars", cfg.chunking.max_chars, int, 1),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            batch_size=_number(e, "batch_size", cfg.embedding.batch_size, int, 1),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=_number(r, "top_k", cfg.retrieval.top_k, int, 1),
        )

    if "context" in data:
        x = data["context"] or {}
        cfg.context = ContextCfg(
            model=str(x.get("model", cfg.context.model)),
            per_message_overhead=_number(
                x, "per_message_overhead", cfg.context.per_message_overhead, int, 0
            ),
            kb_floor=_number(x, "kb_floor", cfg.context.kb_floor, int, 0),
            diff_reserve=_number(x, "diff_reserve", cfg.context.diff_reserve, int, 0),
            diff_floor=_number(x, "diff_floor", cfg.context.diff_floor, int, 0),
            model_limits=_parse_model_limits(x.get("model_limits") or {}),
        )

    return cfg


def _apply_env_overrides(cfg: MeeseeksConfig) -> MeeseeksConfig:
    """Apply MEESEEKS_* environment variable overrides (layer 2)."""
    if db := os.environ.get("MEESEEKS_DB"):
        cfg.storage.db_path = db
    if model := os.environ.get("MEESEEKS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("MEESEEKS_MODEL"):
        cfg.context.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> MeeseeksConfig:
    """Load and return a merged *MeeseeksConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *meeseeks.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *MeeseeksConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
            numeric setting is invalid.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.meeseeks/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Meeseeks global configuration: defaults only.\n"
            "# NEVER store API keys here; use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: tfidf\n"
            "\n"
            "context:\n"
            "  model: gpt-4o\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
