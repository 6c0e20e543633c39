"""Tests for layered configuration loading."""

import json
import os

import pytest

from credential_registry.config_loader import RegistryConfig, load_config
from credential_registry.errors import InputError
from credential_registry.protocol import ProtocolV1, ProtocolV2
from credential_registry.settings import DEFAULT_REGISTRY_ADDRESS, SEPOLIA_CHAIN_ID


def test_defaults_target_public_deployment(tmp_path, monkeypatch):
    """Without env or files the loader returns the Sepolia deployment."""
    monkeypatch.chdir(tmp_path)

    config = load_config()

    assert config.registry.address == DEFAULT_REGISTRY_ADDRESS
    assert config.network.chain_id == SEPOLIA_CHAIN_ID
    assert config.audit.window == 20
    assert config.audit.lookback_blocks == 5000
    assert isinstance(config.protocol, ProtocolV1)


def test_env_var_override(tmp_path, monkeypatch):
    """Environment variables override defaults."""
    monkeypatch.chdir(tmp_path)
    os.environ["CREDREG_PROTOCOL_VERSION"] = "v2"
    os.environ["CREDREG_CONFIRMATIONS"] = "3"
    os.environ["CREDREG_CONFIRMATION_TIMEOUT"] = ""
    config: RegistryConfig | None = None
    try:
        config = load_config()
    finally:
        del os.environ["CREDREG_PROTOCOL_VERSION"]
        del os.environ["CREDREG_CONFIRMATIONS"]
        del os.environ["CREDREG_CONFIRMATION_TIMEOUT"]

    assert config is not None
    assert isinstance(config.protocol, ProtocolV2)
    assert config.confirmation.confirmations == 3
    assert config.confirmation.timeout is None


def test_json_file_overrides_environment(tmp_path, monkeypatch):
    """File values take precedence over environment values."""
    cfg_file = tmp_path / "registry.json"
    cfg_file.write_text(
        json.dumps(
            {
                "network": {"rpc_url": "http://localhost:8545", "chain_id": 31337},
                "audit": {"window": 5},
                "signing": {"domain_name": "Registry", "clock_skew_seconds": 60},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("CREDREG_CONFIG_PATH", str(cfg_file))
    monkeypatch.setenv("CREDREG_AUDIT_WINDOW", "9")
    monkeypatch.setenv("CREDREG_EVENT_LOOKBACK_BLOCKS", "100")

    config = load_config()

    assert config.network.rpc_url == "http://localhost:8545"
    assert config.network.chain_id == 31337
    assert config.audit.window == 5
    assert config.audit.lookback_blocks == 100
    assert config.signing.domain_name == "Registry"
    assert config.signing.clock_skew_seconds == 60


def test_load_from_yaml_file(tmp_path):
    """YAML files are parsed with PyYAML."""
    pytest.importorskip("yaml")

    cfg_file = tmp_path / "registry.yaml"
    cfg_file.write_text(
        """
registry:
  address: "0x000000000000000000000000000000000000dEaD"
  protocol_version: 2
confirmation:
  confirmations: 4
  poll_interval: 0.5
  timeout: 0
documents:
  max_bytes: 1024
""",
        encoding="utf-8",
    )

    config = load_config(str(cfg_file))

    assert config.registry.address == "0x000000000000000000000000000000000000dEaD"
    assert isinstance(config.protocol, ProtocolV2)
    assert config.confirmation.confirmations == 4
    assert config.confirmation.poll_interval == 0.5
    assert config.confirmation.timeout is None
    assert config.documents.max_bytes == 1024


def test_default_candidate_is_discovered(tmp_path, monkeypatch):
    """config/credential-registry.json is picked up from the working directory."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "credential-registry.json").write_text(
        '{"audit": {"lookback_blocks": 250}}', encoding="utf-8"
    )

    assert load_config().audit.lookback_blocks == 250


def test_invalid_values_are_ignored(tmp_path):
    """Wrongly typed or out-of-range values keep the previous value."""
    cfg_file = tmp_path / "registry.json"
    cfg_file.write_text(
        json.dumps(
            {
                "registry": {"address": "not-an-address", "protocol_version": "7"},
                "confirmation": {"confirmations": -1, "poll_interval": "fast"},
                "audit": {"window": True},
                "network": "localhost",
            }
        ),
        encoding="utf-8",
    )

    config = load_config(str(cfg_file))

    assert config.registry.address == DEFAULT_REGISTRY_ADDRESS
    assert config.registry.protocol_version == "1"
    assert config.confirmation.confirmations == 1
    assert config.confirmation.poll_interval == 2.0
    assert config.audit.window == 20


def test_invalid_json_is_rejected(tmp_path):
    """Malformed JSON names the offending file."""
    cfg_file = tmp_path / "invalid.json"
    cfg_file.write_text("{invalid json}", encoding="utf-8")

    with pytest.raises(InputError, match="invalid.json"):
        load_config(str(cfg_file))


def test_invalid_yaml_is_rejected(tmp_path):
    cfg_file = tmp_path / "broken.yml"
    cfg_file.write_text("network: [unclosed\n", encoding="utf-8")

    with pytest.raises(InputError, match="broken.yml"):
        load_config(str(cfg_file))


def test_yaml_must_be_a_mapping(tmp_path):
    cfg_file = tmp_path / "list.yaml"
    cfg_file.write_text("- one\n- two\n", encoding="utf-8")

    with pytest.raises(InputError, match="mapping"):
        load_config(str(cfg_file))


def test_named_file_must_exist(tmp_path, monkeypatch):
    monkeypatch.setenv("CREDREG_CONFIG_PATH", str(tmp_path / "absent.json"))

    with pytest.raises(InputError, match="not found"):
        load_config()


def test_empty_yaml_keeps_environment(tmp_path):
    cfg_file = tmp_path / "empty.yml"
    cfg_file.write_text("", encoding="utf-8")

    assert load_config(str(cfg_file)).registry.address == DEFAULT_REGISTRY_ADDRESS
