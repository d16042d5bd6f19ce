"""工具分发模块

协议层的三个工具都经由此处进入核心：
- execute_read: 只读通道，先按白名单分类，未通过时在任何连接操作之前拒绝
- execute: 完全访问通道，跳过分类
- setup: 部分更新配置文件，只通知配置提供者，不直接操作会话

两个执行通道共用同一条流水线：校验命令 → (分类) → 校验超时 →
ensure_connected → execute → 整理结果。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from android_ssh_mcp.classifier import (
    CommandClass,
    CommandClassifier,
    first_token,
    validate_command,
    validate_timeout,
)
from android_ssh_mcp.config_manager import ConfigManager
from android_ssh_mcp.constants import DEFAULT_COMMAND_TIMEOUT_SECONDS, DEFAULT_SSH_PORT
from android_ssh_mcp.exceptions import ConfigError, NotWhitelistedError
from android_ssh_mcp.session import CommandResult, SessionManager
from android_ssh_mcp.types import CommandResultDict, SetupResultDict


@dataclass(frozen=True)
class CommandRequest:
    command: str
    timeout_seconds: int = DEFAULT_COMMAND_TIMEOUT_SECONDS


def format_output(result: CommandResult) -> str:
    """将执行结果渲染为便于阅读的文本：stdout、stderr块、状态行。"""
    output = ""
    if result.stdout:
        output += result.stdout
        if not output.endswith("\n"):
            output += "\n"

    if result.stderr:
        if output:
            output += "\n"
        output += "stderr:\n" + result.stderr
        if not output.endswith("\n"):
            output += "\n"

    if output:
        output += "\n"

    if result.succeeded:
        output += "✓ Success"
    else:
        output += f"✗ Failed (exit code: {result.exit_code})"
    return output


class ToolDispatcher:
    def __init__(
        self,
        *,
        session: SessionManager,
        classifier: CommandClassifier,
        config_provider: ConfigManager,
    ) -> None:
        self._session = session
        self._classifier = classifier
        self._config = config_provider

    async def execute_read(
        self,
        command: str,
        timeout: int | None = None,
    ) -> CommandResultDict:
        """执行白名单中的只读命令。

        Raises:
            ValidationError: 命令为空或超时越界
            NotWhitelistedError: 命令首个词不在白名单中，未发生任何连接操作
        """
        cmd = validate_command(command)
        if self._classifier.classify(cmd) is CommandClass.WRITE_CAPABLE:
            name = first_token(cmd)
            logger.info("Rejected non-whitelisted command '{}' on read-only path", name)
            raise NotWhitelistedError(
                f"Command '{name}' is not whitelisted as read-only. Use execute tool instead.",
                command=cmd,
                command_name=name,
            )
        request = CommandRequest(command=cmd, timeout_seconds=self._resolve_timeout(timeout))
        return await self._run(request)

    async def execute(
        self,
        command: str,
        timeout: int | None = None,
    ) -> CommandResultDict:
        """执行任意命令（完全访问通道），timeout 为 None 时使用配置的默认超时。"""
        cmd = validate_command(command)
        request = CommandRequest(command=cmd, timeout_seconds=self._resolve_timeout(timeout))
        return await self._run(request)

    def setup(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        key_path: str | None = None,
        password: str | None = None,
    ) -> SetupResultDict:
        """部分更新连接配置。

        未提供的字段保持原值。合并后仍缺少必要信息时返回带指引的错误，
        成功后配置提供者递增 generation，会话在下一次 ensure_connected 时重连。

        Raises:
            ConfigError: 合并后缺少 host、user 或认证方式，或配置无法写入
        """
        current = self._config.settings
        merged_host = host or current.host
        merged_user = user or current.user
        merged_key = key_path or current.key_path
        has_password = bool(password) or current.password is not None
        if not has_password and merged_host and merged_user:
            has_password = self._config.has_stored_password(
                host=merged_host, username=merged_user
            )

        missing: list[str] = []
        if not merged_host:
            missing.append("host")
        if not merged_user:
            missing.append("user")
        if not merged_key and not has_password:
            missing.append("key_path or password")

        if missing:
            raise ConfigError(
                _missing_fields_message(
                    missing,
                    host=merged_host,
                    user=merged_user,
                    key_path=merged_key,
                    has_password=bool(password) or current.password is not None,
                ),
                details={"missing": missing},
            )

        path = self._config.update(
            host=host,
            port=port,
            user=user,
            key_path=key_path,
            password=password,
        )
        settings = self._config.settings
        auth = "SSH key" if settings.key_path else "Password"
        return {
            "ok": True,
            "config_file": str(path),
            "host": settings.host or "",
            "port": settings.port,
            "user": settings.user or "",
            "auth": auth,
            "message": (
                f"✓ Configuration saved to: {path}\n\n"
                "Connection details:\n"
                f"• Host: {settings.host}:{settings.port}\n"
                f"• User: {settings.user}\n"
                f"• Auth: {auth}\n\n"
                "The next command will reconnect with the new settings.\n"
                'Try: "list files in /sdcard"'
            ),
        }

    def _resolve_timeout(self, timeout: int | None) -> int:
        if timeout is None:
            return self._config.settings.default_command_timeout_seconds
        return timeout

    async def _run(self, request: CommandRequest) -> CommandResultDict:
        timeout = validate_timeout(request.timeout_seconds)
        await self._session.ensure_connected()
        result = await self._session.execute(request.command, timeout)
        return {
            "command": request.command,
            "stdout": result.stdout,
            "stderr": result.stderr,
            "exit_code": result.exit_code,
            "success": result.succeeded,
            "output": format_output(result),
        }


def _missing_fields_message(
    missing: list[str],
    *,
    host: str | None,
    user: str | None,
    key_path: str | None,
    has_password: bool,
) -> str:
    lines = ["Setup incomplete. Missing:", ""]
    if "host" in missing:
        lines += [
            "• host - Your Android device IP",
            "  Find it: Run 'ifconfig wlan0' in Termux",
            "",
        ]
    if "user" in missing:
        lines += [
            "• user - Your Termux username",
            "  Find it: Run 'whoami' in Termux",
            "",
        ]
    if "key_path or password" in missing:
        lines += [
            "• Authentication - Choose one:",
            "  SSH key (recommended):",
            "    Generate: ssh-keygen -t ed25519 -f ~/.ssh/id_ed25519",
            f"    Copy to device: ssh-copy-id -p {DEFAULT_SSH_PORT} -i ~/.ssh/id_ed25519.pub USER@HOST",
            '    Then provide: key_path = "~/.ssh/id_ed25519"',
            "",
            "  OR password (less secure):",
            "    Set Termux password: Run 'passwd' in Termux",
            '    Then provide: password = "your_password"',
            "",
        ]

    current: dict[str, Any] = {"host": host, "user": user, "key_path": key_path}
    for name, value in current.items():
        if value:
            lines.append(f'Current: {name} = "{value}"')
    if has_password:
        lines.append('Current: password = "***"')
    return "\n".join(lines).rstrip()
