"""Tabitha configuration loader.

Priority (high → low):
  1. CLI flags           (applied by the caller, not here)
  2. Environment variables  (TABITHA_MODEL, TABITHA_DB, TABITHA_RERANK)
  3. Per-project tabitha.yaml  (working directory)
  4. Global ~/.tabitha/config.yaml  (defaults only, no API keys)
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

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".tabitha"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "tabitha.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["model", "index", "pipeline", "conversation", "telemetry"]
)

_TRUTHY = {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ModelCfg:
    """Language-model runtime configuration (tabitha.yaml: model:).

    Attributes:
        name: LiteLLM model string in 'provider/model' format.
        timeout_s: Upper bound for intent parsing and other single calls.
        max_tokens: Default output budget per call.
        num_retries: LiteLLM retry count on transient errors.
        availability_ttl_s: How long an availability check is cached.
    """

    name: str = "openai/gpt-4o-mini"
    timeout_s: float = 60.0
    max_tokens: int = 512
    num_retries: int = 2
    availability_ttl_s: float = 60.0


@dataclass
class IndexCfg:
    """Tab Index configuration (tabitha.yaml: index:)."""

    db_path: str = ".tabitha.db"
    write_debounce_ms: int = 300
    refresh_throttle_ms: int = 2_000
    reconcile_interval_s: float = 120.0
    lexical_limit: int = 20


@dataclass
class PipelineCfg:
    """Candidate pipeline configuration (tabitha.yaml: pipeline:)."""

    semantic_rerank: bool = True
    rerank_top_n: int = 15
    rerank_timeout_s: float = 60.0
    thinking_hint_s: float = 1.5


@dataclass
class ConversationCfg:
    """Conversation state lifetimes (tabitha.yaml: conversation:)."""

    history_cap: int = 20
    context_ttl_s: float = 30.0
    slot_ttl_s: float = 300.0
    response_cache_ttl_s: float = 300.0


@dataclass
class TelemetryCfg:
    """Telemetry sampling (tabitha.yaml: telemetry:)."""

    enabled: bool = True
    sample_rate: float = 0.1


@dataclass
class TabithaConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    model: ModelCfg = field(default_factory=ModelCfg)
    index: IndexCfg = field(default_factory=IndexCfg)
    pipeline: PipelineCfg = field(default_factory=PipelineCfg)
    conversation: ConversationCfg = field(default_factory=ConversationCfg)
    telemetry: TelemetryCfg = field(default_factory=TelemetryCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

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


def _check_ranges(cfg: TabithaConfig) -> None:
    """Raise ConfigError for values that would break the pipeline."""
    if not 0.0 <= cfg.telemetry.sample_rate <= 1.0:
        raise ConfigError(
            f"telemetry.sample_rate must be between 0 and 1, got {cfg.telemetry.sample_rate}"
        )
    if cfg.conversation.history_cap < 1:
        raise ConfigError("conversation.history_cap must be at least 1")
    if cfg.pipeline.rerank_top_n < 1:
        raise ConfigError("pipeline.rerank_top_n must be at least 1")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


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


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _cfg_from_dict(data: dict[str, Any]) -> TabithaConfig:
    """Build a *TabithaConfig* from a merged raw YAML dict."""
    cfg = TabithaConfig()

    if "model" in data:
        m = data["model"] or {}
        cfg.model = ModelCfg(
            name=str(m.get("name", cfg.model.name)),
            timeout_s=float(m.get("timeout_s", cfg.model.timeout_s)),
            max_tokens=int(m.get("max_tokens", cfg.model.max_tokens)),
            num_retries=int(m.get("num_retries", cfg.model.num_retries)),
            availability_ttl_s=float(
                m.get("availability_ttl_s", cfg.model.availability_ttl_s)
            ),
        )

    if "index" in data:
        i = data["index"] or {}
        cfg.index = IndexCfg(
            db_path=str(i.get("db_path", cfg.index.db_path)),
            write_debounce_ms=int(i.get("write_debounce_ms", cfg.index.write_debounce_ms)),
            refresh_throttle_ms=int(
                i.get("refresh_throttle_ms", cfg.index.refresh_throttle_ms)
            ),
            reconcile_interval_s=float(
                i.get("reconcile_interval_s", cfg.index.reconcile_interval_s)
            ),
            lexical_limit=int(i.get("lexical_limit", cfg.index.lexical_limit)),
        )

    if "pipeline" in data:
        p = data["pipeline"] or {}
        cfg.pipeline = PipelineCfg(
            semantic_rerank=_as_bool(p.get("semantic_rerank", cfg.pipeline.semantic_rerank)),
            rerank_top_n=int(p.get("rerank_top_n", cfg.pipeline.rerank_top_n)),
            rerank_timeout_s=float(p.get("rerank_timeout_s", cfg.pipeline.rerank_timeout_s)),
            thinking_hint_s=float(p.get("thinking_hint_s", cfg.pipeline.thinking_hint_s)),
        )

    if "conversation" in data:
        c = data["conversation"] or {}
        cfg.conversation = ConversationCfg(
            history_cap=int(c.get("history_cap", cfg.conversation.history_cap)),
            context_ttl_s=float(c.get("context_ttl_s", cfg.conversation.context_ttl_s)),
            slot_ttl_s=float(c.get("slot_ttl_s", cfg.conversation.slot_ttl_s)),
            response_cache_ttl_s=float(
                c.get("response_cache_ttl_s", cfg.conversation.response_cache_ttl_s)
            ),
        )

    if "telemetry" in data:
        t = data["telemetry"] or {}
        cfg.telemetry = TelemetryCfg(
            enabled=_as_bool(t.get("enabled", cfg.telemetry.enabled)),
            sample_rate=float(t.get("sample_rate", cfg.telemetry.sample_rate)),
        )

    return cfg


def _apply_env_overrides(cfg: TabithaConfig) -> TabithaConfig:
    """Apply TABITHA_* environment variable overrides (layer 2)."""
    if model := os.environ.get("TABITHA_MODEL"):
        cfg.model.name = model
    if db_path := os.environ.get("TABITHA_DB"):
        cfg.index.db_path = db_path
    if (rerank := os.environ.get("TABITHA_RERANK")) is not None:
        cfg.pipeline.semantic_rerank = _as_bool(rerank)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> TabithaConfig:
    """Load and return a merged *TabithaConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *tabitha.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *TabithaConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            numeric value is out of range.
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

    _check_ranges(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.tabitha/config.yaml`` with defaults if it does not exist.

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
            "# Tabitha global configuration (defaults only).\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export ANTHROPIC_API_KEY=sk-ant-...\n"
            "\n"
            "model:\n"
            "  name: openai/gpt-4o-mini\n"
            "  timeout_s: 60\n"
            "\n"
            "pipeline:\n"
            "  semantic_rerank: true\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
