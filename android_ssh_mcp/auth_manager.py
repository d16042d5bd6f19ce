from __future__ import annotations

import keyring

from android_ssh_mcp.constants import KEYRING_SERVICE_NAME


class AuthManager:
    """在系统keyring中保存SSH密码，避免明文写入配置文件。"""

    def __init__(self, *, service_name: str = KEYRING_SERVICE_NAME) -> None:
        self._service_name = service_name

    def store_password(self, *, host: str, username: str, password: str) -> None:
        if not password:
            raise ValueError("password不能为空")
        keyring.set_password(self._service_name, self._key(host, username), password)

    def get_password(self, *, host: str, username: str) -> str | None:
        return keyring.get_password(self._service_name, self._key(host, username))

    @staticmethod
    def _key(host: str, username: str) -> str:
        return f"{host}|{username}|password".lower()
