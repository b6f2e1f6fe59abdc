import pytest

from sessionkeys.config import Settings
from sessionkeys.core.recovery.errors import ConfigurationError


REQUIRED_ENV = ("ZERODEV_RPC", "PRIVATE_KEY", "TARGET_CONTRACT_ADDRESS", "LEDGER_RPC_URL")


@pytest.fixture
def clean_env(monkeypatch):
    for name in REQUIRED_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_zerodev_rpc_loads_from_env(clean_env):
    """Bundler endpoint should load from the upper-case variable."""

    clean_env.setenv("ZERODEV_RPC", "https://rpc.zerodev.example/api/v3/project/chain/11155111")

    settings = Settings(_env_file=None)

    assert settings.zerodev_rpc == "https://rpc.zerodev.example/api/v3/project/chain/11155111"


def test_ledger_rpc_defaults_to_bundler_endpoint(clean_env):
    """Ledger reads go to the bundler endpoint unless overridden."""

    clean_env.setenv("ZERODEV_RPC", "https://bundler.example")

    settings = Settings(_env_file=None)

    assert settings.ledger_rpc_url == "https://bundler.example"


def test_ledger_rpc_override(clean_env):
    clean_env.setenv("ZERODEV_RPC", "https://bundler.example")
    clean_env.setenv("LEDGER_RPC_URL", "https://node.example")

    settings = Settings(_env_file=None)

    assert settings.ledger_rpc_url == "https://node.example"


def test_private_key_is_secret(clean_env):
    """Owner key must not leak through repr."""

    key = "0x" + "11" * 32
    clean_env.setenv("PRIVATE_KEY", key)

    settings = Settings(_env_file=None)

    assert settings.has_private_key is True
    assert settings.owner_key() == key
    assert key not in repr(settings)


def test_missing_runtime_inputs_are_listed(clean_env):
    """Every absent input is reported before any network call."""

    settings = Settings(_env_file=None)

    assert settings.missing_runtime_inputs() == ["ZERODEV_RPC", "PRIVATE_KEY", "TARGET_CONTRACT_ADDRESS"]
    assert settings.owner_key() is None

    with pytest.raises(ConfigurationError) as exc_info:
        settings.require_runtime_inputs()

    assert exc_info.value.context.details["missing"] == [
        "ZERODEV_RPC",
        "PRIVATE_KEY",
        "TARGET_CONTRACT_ADDRESS",
    ]


def test_require_runtime_inputs_passes_when_configured(clean_env):
    clean_env.setenv("ZERODEV_RPC", "https://bundler.example")
    clean_env.setenv("PRIVATE_KEY", "0x" + "22" * 32)
    clean_env.setenv("TARGET_CONTRACT_ADDRESS", "0x1111111111111111111111111111111111111111")

    settings = Settings(_env_file=None)

    settings.require_runtime_inputs()
    assert settings.missing_runtime_inputs() == []


def test_version_defaults(clean_env):
    settings = Settings(_env_file=None)

    assert settings.entry_point_version in settings.supported_entry_point_versions
    assert settings.kernel_version in settings.supported_kernel_versions
    assert settings.entry_point_address == "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
