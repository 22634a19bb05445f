"""
Configuration tests.
"""
from call_signaling import config as config_module
from call_signaling.config import DEFAULT_STUN_SERVERS, SignalingConfig, get_config


def test_defaults():
    config = SignalingConfig()
    assert config.stun_servers == DEFAULT_STUN_SERVERS
    assert config.ice_candidate_pool_size == 10
    assert config.caller_name == "Doctor"
    assert not config.has_turn_server


def test_from_env(monkeypatch):
    monkeypatch.setenv("STUN_SERVERS", "stun:a.example.com:3478, stun:b.example.com:3478")
    monkeypatch.setenv("ICE_CANDIDATE_POOL_SIZE", "4  # small pool")
    monkeypatch.setenv("CALLER_NAME", "Dr. Jansen")
    monkeypatch.setenv("CONTROL_API_PORT", "not-a-port")
    monkeypatch.setenv("TURN_SERVER_URL", "turn:turn.example.com")
    monkeypatch.setenv("TURN_USERNAME", "u")
    monkeypatch.setenv("TURN_CREDENTIAL", "p")

    config = SignalingConfig.from_env()

    assert config.stun_servers == ("stun:a.example.com:3478", "stun:b.example.com:3478")
    assert config.ice_candidate_pool_size == 4
    assert config.caller_name == "Dr. Jansen"
    assert config.control_api_port == 8000
    assert config.has_turn_server


def test_turn_requires_credentials(monkeypatch):
    monkeypatch.setenv("TURN_SERVER_URL", "turn:turn.example.com")
    monkeypatch.delenv("TURN_USERNAME", raising=False)
    monkeypatch.delenv("TURN_CREDENTIAL", raising=False)
    assert not SignalingConfig.from_env().has_turn_server


def test_empty_stun_list_keeps_defaults(monkeypatch):
    monkeypatch.setenv("STUN_SERVERS", " , ")
    assert SignalingConfig.from_env().stun_servers == DEFAULT_STUN_SERVERS


def test_get_config_is_cached(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)
    assert get_config() is get_config()
