from pathlib import Path

import pytest
import toml

from android_ssh_mcp.config_manager import ConfigManager
from android_ssh_mcp.exceptions import ConfigError


def test_config_manager_creates_template_on_first_run(tmp_path: Path) -> None:
    config_file = tmp_path / "mcp-android-ssh" / "config.toml"

    manager = ConfigManager.load(config_file=config_file)

    assert config_file.exists()
    assert "key_path" in config_file.read_text(encoding="utf-8")
    assert manager.first_run is True
    assert manager.settings.host is None
    assert manager.settings.port == 8022
    with pytest.raises(ConfigError, match="Configuration Setup Required"):
        manager.connection_config()


def test_config_manager_uses_xdg_config_home_by_default(tmp_path: Path) -> None:
    manager = ConfigManager.load()
    assert manager.config_path == tmp_path / "xdg" / "mcp-android-ssh" / "config.toml"
    assert manager.config_path.exists()


def test_config_manager_loads_toml_then_env_overrides(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        toml.dumps({"host": "192.168.1.100", "port": 2222, "log_level": "WARNING"}),
        encoding="utf-8",
    )

    monkeypatch.setenv("ANDROID_SSH_HOST", "192.168.1.200")
    monkeypatch.setenv("ANDROID_SSH_LOG_LEVEL", "ERROR")
    manager = ConfigManager.load(config_file=config_file)

    assert manager.first_run is False
    assert manager.settings.host == "192.168.1.200"
    assert manager.settings.port == 2222
    assert manager.settings.log_level == "ERROR"


def test_config_manager_reads_dotenv_file(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(toml.dumps({"host": "192.168.1.100"}), encoding="utf-8")
    env_file = tmp_path / "android.env"
    env_file.write_text("ANDROID_SSH_USER=u0_a555\nANDROID_SSH_PASSWORD=secret\n", encoding="utf-8")

    manager = ConfigManager.load(config_file=config_file, env_file=env_file)
    config = manager.connection_config()

    assert config.user == "u0_a555"
    assert config.password is not None
    assert config.password.get_secret_value() == "secret"
    assert "secret" not in repr(config)


def test_config_manager_uses_config_file_from_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    config_file = tmp_path / "c.toml"
    config_file.write_text(toml.dumps({"log_level": "WARNING"}), encoding="utf-8")
    monkeypatch.setenv("ANDROID_SSH_CONFIG_FILE", str(config_file))

    manager = ConfigManager.load()
    assert manager.config_path == config_file
    assert manager.settings.log_level == "WARNING"


def test_config_manager_rejects_invalid_toml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("host = ", encoding="utf-8")

    with pytest.raises(ConfigError, match="Failed to parse config file"):
        ConfigManager.load(config_file=config_file)


def test_config_manager_rejects_invalid_port(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(toml.dumps({"port": 70000}), encoding="utf-8")

    with pytest.raises(ConfigError, match="Invalid configuration"):
        ConfigManager.load(config_file=config_file)


def test_connection_config_requires_authentication(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(toml.dumps({"host": "10.0.0.5", "user": "u0_a555"}), encoding="utf-8")

    manager = ConfigManager.load(config_file=config_file)
    with pytest.raises(ConfigError, match="Must provide either 'password' or 'key_path'"):
        manager.connection_config()


def test_connection_config_rejects_missing_key_file(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        toml.dumps({"host": "10.0.0.5", "user": "u0_a555", "key_path": str(tmp_path / "nope")}),
        encoding="utf-8",
    )

    manager = ConfigManager.load(config_file=config_file)
    with pytest.raises(ConfigError, match="SSH key file not found"):
        manager.connection_config()


def test_connection_config_expands_key_path(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    home = tmp_path / "home"
    (home / ".ssh").mkdir(parents=True)
    key_file = home / ".ssh" / "id_ed25519"
    key_file.write_text("key", encoding="utf-8")
    key_file.chmod(0o644)
    monkeypatch.setenv("HOME", str(home))
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        toml.dumps({"host": "10.0.0.5", "user": "u0_a555", "key_path": "~/.ssh/id_ed25519"}),
        encoding="utf-8",
    )

    config = ConfigManager.load(config_file=config_file).connection_config()

    assert config.key_path == key_file
    assert config.auth_mode == "key"


def test_update_merges_fields_and_bumps_generation(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(toml.dumps({"host": "10.0.0.5", "user": "u0_a555"}), encoding="utf-8")
    manager = ConfigManager.load(config_file=config_file)
    before = manager.generation

    path = manager.update(port=2222, password="secret", key_path=None)

    assert path == config_file
    assert manager.has_changed(before)
    assert manager.settings.port == 2222
    assert manager.settings.host == "10.0.0.5"
    saved = toml.loads(config_file.read_text(encoding="utf-8"))
    assert "key_path" not in saved
    assert config_file.stat().st_mode & 0o777 == 0o600


def test_update_rejects_unknown_fields(tmp_path: Path) -> None:
    manager = ConfigManager.load(config_file=tmp_path / "config.toml")
    with pytest.raises(ConfigError, match="Unknown config fields: bogus"):
        manager.update(bogus="x")
    assert manager.generation == 0


def test_password_stored_in_keyring_when_enabled(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    store = {}

    def set_password(service_name: str, key: str, password: str) -> None:
        store[(service_name, key)] = password

    def get_password(service_name: str, key: str):
        return store.get((service_name, key))

    monkeypatch.setattr("keyring.set_password", set_password)
    monkeypatch.setattr("keyring.get_password", get_password)

    config_file = tmp_path / "config.toml"
    config_file.write_text(toml.dumps({"use_keyring": True}), encoding="utf-8")
    manager = ConfigManager.load(config_file=config_file)

    manager.update(host="10.0.0.5", user="u0_a555", password="secret")

    saved = toml.loads(config_file.read_text(encoding="utf-8"))
    assert "password" not in saved
    assert store == {("mcp-android-ssh", "10.0.0.5|u0_a555|password"): "secret"}
    config = manager.connection_config()
    assert config.password is not None
    assert config.password.get_secret_value() == "secret"
