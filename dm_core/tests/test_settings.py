import pytest
from pydantic import ValidationError

from dm_core.config.settings import Settings
from dm_core.conversation.manager import ConversationConfig
from dm_core.resilience.pipeline import PipelineConfig


def test_defaults():
    s = Settings(_env_file=None)
    assert s.provider == "grok"
    assert s.max_retries == 3
    assert s.max_context_tokens == 4000
    assert s.max_history_messages == 50
    assert s.cache_enabled is True


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("DM_MAX_RETRIES", "5")
    monkeypatch.setenv("DM_LOG_LEVEL", "debug")
    s = Settings(_env_file=None)
    assert s.max_retries == 5
    assert s.log_level == "DEBUG"


def test_yaml_config_file(monkeypatch, tmp_path):
    cfg = tmp_path / "dm.yaml"
    cfg.write_text("max_context_tokens: 2048\nprovider: openai\n", encoding="utf-8")
    monkeypatch.setenv("DM_CONFIG_FILE", str(cfg))
    monkeypatch.setenv("DM_PROVIDER", "grok")
    s = Settings(_env_file=None)
    assert s.max_context_tokens == 2048
    # 环境变量优先于 yaml
    assert s.provider == "grok"


def test_validators_reject_bad_values():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, api_key="short")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, base_delay_ms=5000, max_delay_ms=1000)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, max_context_tokens=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="LOUD")


def test_component_configs_from_settings():
    s = Settings(_env_file=None, timeout_ms=1500, max_history_messages=7, enable_persistence=True)
    assert PipelineConfig.from_settings(s).timeout_ms == 1500
    conv = ConversationConfig.from_settings(s)
    assert conv.max_history_messages == 7
    assert conv.enable_persistence is True
    assert PipelineConfig.from_settings(s).retry_policy().base_delay == 1.0
