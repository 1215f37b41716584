import pytest

from modgate.config import FailurePolicy, GatewayConfig, defaulting_suffix
from modgate.errors import ConfigurationError


def test_defaults_from_env():
    config = GatewayConfig.from_env({"OPENAI_API_KEY": "sk-test"})
    assert config.max_frames == 10
    assert config.frame_interval_seconds == 2.0
    assert config.max_concurrent_calls == 4
    assert config.failure_policy == FailurePolicy.OPEN
    assert config.fail_open
    assert config.x_bearer_token is None
    assert config.openai_api_url == "https://api.openai.com/v1"


def test_overrides_from_env():
    config = GatewayConfig.from_env({
        "OPENAI_API_KEY": "sk-test",
        "VIDEO_MAX_FRAMES": "3",
        "VIDEO_FRAME_INTERVAL": "0.5",
        "FAILURE_POLICY": "Closed",
        "X_BEARER_TOKEN": "token",
        "OPENAI_VISION_MODEL": "gpt-4o-mini",
    })
    assert config.max_frames == 3
    assert config.frame_interval_seconds == 0.5
    assert config.failure_policy == FailurePolicy.CLOSED
    assert not config.fail_open
    assert config.x_bearer_token == "token"
    assert config.vision_model == "gpt-4o-mini"


def test_missing_api_key():
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        GatewayConfig.from_env({})


def test_invalid_number():
    with pytest.raises(ConfigurationError, match="VIDEO_MAX_FRAMES"):
        GatewayConfig.from_env({"OPENAI_API_KEY": "sk-test", "VIDEO_MAX_FRAMES": "ten"})


def test_invalid_policy():
    with pytest.raises(ConfigurationError, match="FAILURE_POLICY"):
        GatewayConfig.from_env({"OPENAI_API_KEY": "sk-test", "FAILURE_POLICY": "maybe"})


def test_unsupported_provider():
    with pytest.raises(ConfigurationError, match="Unsupported AI provider"):
        GatewayConfig.from_env({"OPENAI_API_KEY": "sk-test", "AI_PROVIDER": "anthropic"})


def test_non_positive_interval_rejected():
    with pytest.raises(ConfigurationError):
        GatewayConfig(openai_api_key="sk-test", frame_interval_seconds=0)


def test_defaulting_suffix():
    assert defaulting_suffix(FailurePolicy.OPEN) == "defaulting to safe"
    assert defaulting_suffix(FailurePolicy.CLOSED) == "defaulting to unsafe"
