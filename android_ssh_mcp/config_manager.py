"""配置提供者模块

负责从 TOML 配置文件、.env 文件和环境变量合并出运行配置，
并为会话管理器提供连接参数。setup 工具通过 update() 写回配置，
generation 计数随之递增，会话管理器据此判断当前连接是否过期。
"""
from __future__ import annotations

import os
import stat
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import toml
from dotenv import dotenv_values
from loguru import logger
from pydantic import SecretStr

from android_ssh_mcp.auth_manager import AuthManager
from android_ssh_mcp.constants import (
    DEFAULT_SSH_PORT,
    ENV_PREFIX,
    SETUP_GUIDE_URL,
    default_config_file,
)
from android_ssh_mcp.exceptions import ConfigError
from android_ssh_mcp.settings import CONNECTION_FIELDS, AndroidSSHSettings

_SECRET_FIELDS = ("password", "key_passphrase")

_TEMPLATE = f"""\
# Android SSH MCP Server Configuration
# Edit with your Android device credentials

# Connection Settings
# host = "192.168.1.100"   # Find with: ip -4 addr show wlan0 (in Termux)
# port = {DEFAULT_SSH_PORT}              # Termux SSH default
# user = "u0_a555"         # Find with: whoami (in Termux)

# Authentication (choose one method)
# key_path = "~/.ssh/id_ed25519"  # Recommended: SSH key auth
# password = "your_password"       # Alternative: password auth

# Quick Setup:
# 1. Find your device IP: Run 'ip -4 addr show wlan0' in Termux
# 2. Find your username: Run 'whoami' in Termux
# 3. Generate SSH key: ssh-keygen -t ed25519 -f ~/.ssh/id_ed25519 -N ""
# 4. Copy to device: ssh-copy-id -p {DEFAULT_SSH_PORT} -i ~/.ssh/id_ed25519.pub USER@HOST
# 5. Update host and user above
"""


@dataclass(frozen=True)
class ConnectionConfig:
    """一次连接所需的全部参数。

    Attributes:
        host: 设备地址
        port: SSH端口
        user: SSH用户名
        key_path: 展开后的私钥路径
        password: SSH密码
        key_passphrase: 私钥口令
    """

    host: str
    port: int
    user: str
    key_path: Path | None = None
    password: SecretStr | None = field(default=None, repr=False)
    key_passphrase: SecretStr | None = field(default=None, repr=False)

    @property
    def auth_mode(self) -> str:
        if self.key_path and self.password:
            return "mixed"
        if self.key_path:
            return "key"
        if self.password:
            return "password"
        return "none"


class ConfigManager:
    def __init__(
        self,
        settings: AndroidSSHSettings,
        *,
        env_file: Path | None = None,
        first_run: bool = False,
        auth: AuthManager | None = None,
    ) -> None:
        self.settings = settings
        self.first_run = first_run
        self._env_file = env_file
        self._auth = auth or AuthManager()
        self._generation = 0

    @classmethod
    def load(
        cls,
        *,
        config_file: Path | None = None,
        env_file: Path | None = None,
        create_template: bool = True,
        auth: AuthManager | None = None,
    ) -> ConfigManager:
        config_path = cls._resolve_config_path(config_file)

        first_run = False
        if create_template and not config_path.exists():
            cls._write_template(config_path)
            first_run = True

        settings = cls._build_settings(config_path, env_file)
        return cls(settings, env_file=env_file, first_run=first_run, auth=auth)

    @property
    def config_path(self) -> Path:
        return self.settings.config_file

    @property
    def generation(self) -> int:
        return self._generation

    def has_changed(self, since: int) -> bool:
        return self._generation != since

    def reload(self) -> None:
        """重新读取配置文件与环境变量，并标记配置已变更。"""
        self.settings = self._build_settings(self.config_path, self._env_file)
        self.first_run = False
        self._generation += 1

    def update(self, **fields: Any) -> Path:
        """部分更新配置文件，值为 None 的字段保持不变。

        启用 use_keyring 时密码写入系统keyring而非配置文件。

        Args:
            **fields: host、port、user、password、key_path、key_passphrase

        Returns:
            写入的配置文件路径

        Raises:
            ConfigError: 字段名未知或配置文件无法写入时抛出
        """
        unknown = set(fields) - set(CONNECTION_FIELDS)
        if unknown:
            raise ConfigError(f"Unknown config fields: {', '.join(sorted(unknown))}")

        path = self.config_path
        data = self._read_toml(path) if path.is_file() else {}
        changes = {k: v for k, v in fields.items() if v is not None}

        password = changes.get("password")
        if password is not None and self.settings.use_keyring:
            host = changes.get("host") or data.get("host") or self.settings.host
            user = changes.get("user") or data.get("user") or self.settings.user
            if not host or not user:
                raise ConfigError("host and user are required to store the password in the keyring")
            self._auth.store_password(host=str(host), username=str(user), password=str(password))
            changes.pop("password")
            data.pop("password", None)

        data.update(changes)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                toml.dump(data, f)
            if "password" in data or "key_passphrase" in data:
                path.chmod(0o600)
        except OSError as exc:
            raise ConfigError(f"Failed to save config file {path}: {exc}") from exc

        logger.info(
            "Config saved to {} (fields: {})",
            path,
            ", ".join(sorted(k for k in changes if k not in _SECRET_FIELDS)) or "-",
        )
        self.reload()
        return path

    def has_stored_password(self, *, host: str, username: str) -> bool:
        """keyring 中是否已保存该主机与用户的密码（未启用 use_keyring 时恒为 False）。"""
        if not self.settings.use_keyring:
            return False
        return bool(self._auth.get_password(host=host, username=username))

    def connection_config(self) -> ConnectionConfig:
        """构造并校验连接参数。

        Returns:
            ConnectionConfig: 校验通过的连接参数

        Raises:
            ConfigError: host/user缺失、没有任何认证方式或私钥文件不存在时抛出
        """
        s = self.settings
        if not s.host or not s.user:
            raise ConfigError(
                self.first_run_message(self.config_path),
                details={"config_file": str(self.config_path)},
            )

        password = s.password
        if password is None and s.use_keyring:
            stored = self._auth.get_password(host=s.host, username=s.user)
            if stored:
                password = SecretStr(stored)

        if password is None and not s.key_path:
            raise ConfigError(
                "Must provide either 'password' or 'key_path' for authentication",
                details={"config_file": str(self.config_path)},
            )

        key_path: Path | None = None
        if s.key_path:
            key_path = Path(s.key_path).expanduser()
            if not key_path.exists():
                raise ConfigError(
                    f"SSH key file not found: {key_path}",
                    details={"key_path": str(key_path)},
                )
            self._warn_on_key_permissions(key_path)

        return ConnectionConfig(
            host=s.host,
            port=s.port,
            user=s.user,
            key_path=key_path,
            password=password,
            key_passphrase=s.key_passphrase,
        )

    @staticmethod
    def first_run_message(config_path: Path) -> str:
        return (
            "Configuration Setup Required\n\n"
            f"Config file: {config_path}\n\n"
            "Please edit this file with your Android device credentials "
            "(or call the setup tool):\n"
            "- host: Your device IP (run 'ip -4 addr show wlan0' in Termux)\n"
            "- user: Your Termux username (run 'whoami' in Termux)\n"
            "- key_path: Path to SSH key (recommended: ~/.ssh/id_ed25519)\n"
            "- password: Only if not using key auth\n\n"
            "Quick SSH key setup:\n"
            '1. ssh-keygen -t ed25519 -f ~/.ssh/id_ed25519 -N ""\n'
            f"2. ssh-copy-id -p {DEFAULT_SSH_PORT} -i ~/.ssh/id_ed25519.pub USER@HOST\n"
            "3. Update config file with your credentials\n\n"
            "Alternatively, set environment variables:\n"
            f"{ENV_PREFIX}HOST, {ENV_PREFIX}USER, {ENV_PREFIX}KEY_PATH\n\n"
            f"Full setup guide: {SETUP_GUIDE_URL}"
        )

    @staticmethod
    def _resolve_config_path(config_file: Path | None) -> Path:
        if config_file is not None:
            return config_file
        env_value = os.getenv(f"{ENV_PREFIX}CONFIG_FILE")
        if env_value:
            return Path(env_value).expanduser()
        return default_config_file()

    @classmethod
    def _build_settings(cls, config_path: Path, env_file: Path | None) -> AndroidSSHSettings:
        file_data: dict[str, Any] = {}
        if config_path.exists() and config_path.is_file():
            file_data = cls._read_toml(config_path)

        dotenv_data: dict[str, Any] = {}
        if env_file is not None:
            dotenv_data = cls._read_dotenv(env_file)
        elif Path(".env").exists():
            dotenv_data = cls._read_dotenv(Path(".env"))

        env_data = cls._read_env(os.environ)
        merged: dict[str, Any] = {
            **file_data,
            **dotenv_data,
            **env_data,
            "config_file": config_path,
        }
        try:
            return AndroidSSHSettings.model_validate(merged)
        except ValueError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    @staticmethod
    def _write_template(path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(_TEMPLATE, encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Failed to create config template: {exc}") from exc
        logger.info("Created config template at: {}", path)

    @staticmethod
    def _read_toml(path: Path) -> dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = toml.load(f)
        except (OSError, toml.TomlDecodeError) as exc:
            raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
        return dict(raw)

    @staticmethod
    def _read_dotenv(path: Path) -> dict[str, Any]:
        raw = dotenv_values(path)
        return ConfigManager._read_env(raw)

    @staticmethod
    def _read_env(mapping: Mapping[str, Any]) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name in AndroidSSHSettings.model_fields.keys():
            env_key = f"{ENV_PREFIX}{field_name.upper()}"
            if env_key in mapping and mapping[env_key] not in (None, ""):
                data[field_name] = mapping[env_key]
        return data

    @staticmethod
    def _warn_on_key_permissions(key_path: Path) -> None:
        if os.name != "posix":
            return
        try:
            mode = stat.S_IMODE(key_path.stat().st_mode)
        except OSError:
            return
        if mode != 0o600:
            logger.warning(
                "SSH key file has permissions {:o}, recommended 600: {}", mode, key_path
            )
