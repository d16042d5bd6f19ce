from __future__ import annotations

import os
from pathlib import Path

# Termux sshd 默认端口
DEFAULT_SSH_PORT: int = 8022

DEFAULT_COMMAND_TIMEOUT_SECONDS: int = 30
MIN_COMMAND_TIMEOUT_SECONDS: int = 1
MAX_COMMAND_TIMEOUT_SECONDS: int = 300

DEFAULT_CONNECT_RETRY_COUNT: int = 3
DEFAULT_CONNECT_RETRY_DELAY_SECONDS: float = 2.0
DEFAULT_CONNECT_TIMEOUT_SECONDS: float = 15.0
DEFAULT_KEEPALIVE_INTERVAL_SECONDS: int = 30

CONFIG_DIR_NAME: str = "mcp-android-ssh"
CONFIG_FILE_NAME: str = "config.toml"
ENV_PREFIX: str = "ANDROID_SSH_"

SERVER_NAME: str = "mcp-android-ssh"
KEYRING_SERVICE_NAME: str = "mcp-android-ssh"

SETUP_GUIDE_URL: str = "https://github.com/vaknin/mcp-android-ssh#setup"


def default_config_dir() -> Path:
    """返回配置目录（$XDG_CONFIG_HOME/mcp-android-ssh，默认 ~/.config/mcp-android-ssh）。"""
    base = os.getenv("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / CONFIG_DIR_NAME


def default_config_file() -> Path:
    return default_config_dir() / CONFIG_FILE_NAME
