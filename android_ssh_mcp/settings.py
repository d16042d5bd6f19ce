"""Android SSH MCP 配置设置模块

使用 Pydantic Settings 管理配置，支持以下配置方式（优先级从高到低）：
1. 环境变量（前缀：ANDROID_SSH_）
2. .env 文件
3. TOML 配置文件（默认 ~/.config/mcp-android-ssh/config.toml）
4. 默认值

示例环境变量：
    ANDROID_SSH_HOST=192.168.1.100
    ANDROID_SSH_USER=u0_a555
    ANDROID_SSH_KEY_PATH=~/.ssh/id_ed25519
    ANDROID_SSH_LOG_LEVEL=DEBUG
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from android_ssh_mcp.constants import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_CONNECT_RETRY_COUNT,
    DEFAULT_CONNECT_RETRY_DELAY_SECONDS,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
    DEFAULT_SSH_PORT,
    ENV_PREFIX,
    MAX_COMMAND_TIMEOUT_SECONDS,
    MIN_COMMAND_TIMEOUT_SECONDS,
    default_config_dir,
    default_config_file,
)

# 连接字段：可通过 setup 工具写回配置文件
CONNECTION_FIELDS: tuple[str, ...] = (
    "host",
    "port",
    "user",
    "password",
    "key_path",
    "key_passphrase",
)


class AndroidSSHSettings(BaseSettings):
    """Android SSH MCP 服务器配置类。

    支持通过环境变量、.env文件、TOML文件或默认值进行配置。
    环境变量前缀为 ANDROID_SSH_。
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    # 配置文件路径
    config_file: Path = Field(default_factory=default_config_file)

    # 连接配置
    host: str | None = Field(default=None, description="Android设备地址")
    port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535, description="SSH端口")
    user: str | None = Field(default=None, description="Termux用户名")
    password: SecretStr | None = Field(default=None, description="SSH密码")
    key_path: str | None = Field(default=None, description="SSH私钥路径")
    key_passphrase: SecretStr | None = Field(default=None, description="私钥口令")
    known_hosts: str | None = Field(
        default=None,
        description="known_hosts文件路径，为空时接受任意主机密钥",
    )
    use_keyring: bool = Field(default=False, description="密码是否存储在系统keyring中")

    # 会话配置
    connect_timeout_seconds: float = Field(
        default=DEFAULT_CONNECT_TIMEOUT_SECONDS, gt=0, description="SSH握手超时(秒)"
    )
    connect_retry_count: int = Field(
        default=DEFAULT_CONNECT_RETRY_COUNT, ge=1, description="连接尝试次数"
    )
    connect_retry_delay_seconds: float = Field(
        default=DEFAULT_CONNECT_RETRY_DELAY_SECONDS, ge=0, description="连接重试间隔(秒)"
    )
    keepalive_interval_seconds: int = Field(
        default=DEFAULT_KEEPALIVE_INTERVAL_SECONDS, ge=0, description="保活间隔(秒)，0表示关闭"
    )
    default_command_timeout_seconds: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT_SECONDS,
        ge=MIN_COMMAND_TIMEOUT_SECONDS,
        le=MAX_COMMAND_TIMEOUT_SECONDS,
        description="命令默认超时时间(秒)",
    )

    # 日志配置
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(
        default_factory=lambda: default_config_dir() / "logs", description="日志目录"
    )
    log_rotation: str = Field(default="10 MB", description="日志轮转大小")
    log_retention: str = Field(default="30 days", description="日志保留时间")
