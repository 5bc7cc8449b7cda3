"""Tests for the tabitha config loader."""

from __future__ import annotations

import os
import stat
import warnings
from pathlib import Path

import pytest
import yaml

from tabitha.config import (
    ConfigError,
    ConversationCfg,
    ModelCfg,
    PipelineCfg,
    TabithaConfig,
    ensure_global_config,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("TABITHA_MODEL", "TABITHA_DB", "TABITHA_RERANK"):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_defaults_without_any_file(tmp_path: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")
    assert isinstance(cfg, TabithaConfig)
    assert cfg.model == ModelCfg()
    assert cfg.pipeline == PipelineCfg()
    assert cfg.conversation == ConversationCfg()
    assert cfg.index.db_path == ".tabitha.db"
    assert cfg.telemetry.sample_rate == pytest.approx(0.1)


def test_default_lifetimes() -> None:
    conv = ConversationCfg()
    assert conv.history_cap == 20
    assert conv.context_ttl_s == 30.0
    assert conv.slot_ttl_s == 300.0
    assert conv.response_cache_ttl_s == 300.0


def test_global_null_yaml_gives_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("# nothing here\n", encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.model.name == "openai/gpt-4o-mini"


def test_empty_section_keeps_defaults(tmp_path: Path) -> None:
    (tmp_path / "tabitha.yaml").write_text("pipeline:\n", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")
    assert cfg.pipeline.rerank_top_n == 15


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"model": {"name": "openai/gpt-4o-mini"}})
    _write_yaml(tmp_path / "tabitha.yaml", {"model": {"name": "openai/gpt-4o"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.model.name == "openai/gpt-4o"


def test_project_partial_override_keeps_global_fields(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"pipeline": {"rerank_top_n": 10, "rerank_timeout_s": 5}})
    _write_yaml(tmp_path / "tabitha.yaml", {"pipeline": {"rerank_top_n": 8}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.pipeline.rerank_top_n == 8
    assert cfg.pipeline.rerank_timeout_s == 5.0


def test_all_sections_parsed(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "tabitha.yaml",
        {
            "model": {"timeout_s": 10, "max_tokens": 256, "num_retries": 0},
            "index": {"write_debounce_ms": 100, "reconcile_interval_s": 60, "lexical_limit": 5},
            "conversation": {"history_cap": 4, "slot_ttl_s": 60},
            "telemetry": {"enabled": False, "sample_rate": 1},
        },
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")
    assert cfg.model.timeout_s == 10.0
    assert cfg.model.max_tokens == 256
    assert cfg.model.num_retries == 0
    assert cfg.index.write_debounce_ms == 100
    assert cfg.index.reconcile_interval_s == 60.0
    assert cfg.index.lexical_limit == 5
    assert cfg.conversation.history_cap == 4
    assert cfg.conversation.slot_ttl_s == 60.0
    assert cfg.conversation.context_ttl_s == 30.0
    assert cfg.telemetry.enabled is False
    assert cfg.telemetry.sample_rate == 1.0


@pytest.mark.parametrize(("raw", "expected"), [("off", False), ("yes", True), (False, False)])
def test_semantic_rerank_bool_coercion(tmp_path: Path, raw: object, expected: bool) -> None:
    _write_yaml(tmp_path / "tabitha.yaml", {"pipeline": {"semantic_rerank": raw}})
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")
    assert cfg.pipeline.semantic_rerank is expected


# ---------------------------------------------------------------------------
# API key validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"model": {"api_key": "sk-secret"}})

    with pytest.raises(ConfigError, match="model.api_key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_max_tokens_is_not_an_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"model": {"max_tokens": 128}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.model.max_tokens == 128


# ---------------------------------------------------------------------------
# Range checks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("data", "match"),
    [
        ({"telemetry": {"sample_rate": 1.5}}, "sample_rate"),
        ({"telemetry": {"sample_rate": -0.1}}, "sample_rate"),
        ({"conversation": {"history_cap": 0}}, "history_cap"),
        ({"pipeline": {"rerank_top_n": 0}}, "rerank_top_n"),
    ],
)
def test_out_of_range_values_raise(tmp_path: Path, data: dict, match: str) -> None:
    _write_yaml(tmp_path / "tabitha.yaml", data)
    with pytest.raises(ConfigError, match=match):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")


# ---------------------------------------------------------------------------
# Unknown key warnings
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"unknown_section": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)

    assert any("unknown_section" in str(w.message) for w in caught)
    assert cfg.model.name == "openai/gpt-4o-mini"


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_model_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(tmp_path / "tabitha.yaml", {"model": {"name": "openai/gpt-4o"}})
    monkeypatch.setenv("TABITHA_MODEL", "anthropic/claude-3-5-haiku-latest")

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")
    assert cfg.model.name == "anthropic/claude-3-5-haiku-latest"


def test_env_db_and_rerank(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TABITHA_DB", "/tmp/other.db")
    monkeypatch.setenv("TABITHA_RERANK", "0")

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")
    assert cfg.index.db_path == "/tmp/other.db"
    assert cfg.pipeline.semantic_rerank is False


def test_env_absent_does_not_override(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "tabitha.yaml", {"index": {"db_path": "tabs.db"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "nonexistent.yaml")
    assert cfg.index.db_path == "tabs.db"


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_file(tmp_path: Path) -> None:
    target = tmp_path / ".tabitha" / "config.yaml"
    result = ensure_global_config(global_config_path=target)

    assert result == target
    parsed = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert parsed["model"]["name"] == "openai/gpt-4o-mini"
    assert parsed["pipeline"]["semantic_rerank"] is True


def test_ensure_global_config_output_loads_cleanly(tmp_path: Path) -> None:
    target = tmp_path / ".tabitha" / "config.yaml"
    ensure_global_config(global_config_path=target)

    cfg = load_config(project_dir=tmp_path, global_config_path=target)
    assert cfg.model.timeout_s == 60.0


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_ensure_global_config_permissions(tmp_path: Path) -> None:
    target = tmp_path / ".tabitha" / "config.yaml"
    ensure_global_config(global_config_path=target)

    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert stat.S_IMODE(target.parent.stat().st_mode) == 0o700


def test_ensure_global_config_keeps_existing(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("model:\n  name: custom/model\n", encoding="utf-8")

    ensure_global_config(global_config_path=target)
    assert "custom/model" in target.read_text(encoding="utf-8")
