"""Android SSH MCP Server 模块

本模块把核心能力以 MCP (Model Context Protocol) 工具的形式暴露给客户端：
- execute_read: 执行白名单中的只读命令（低摩擦通道）
- execute: 执行任意命令（需要用户明确授权）
- setup: 部分更新 Android 设备的连接配置

核心抛出的 AndroidSSHError 在此统一转换为 MCP 工具错误，
错误文本以 "[kind]" 开头，调用方可据此区分错误类型。

使用方式：
    通过 stdio 启动 MCP 服务器，供 Claude Desktop 等客户端调用。
"""
from __future__ import annotations

import sys
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from io import TextIOWrapper
from pathlib import Path
from tempfile import gettempdir
from typing import Any, Literal, cast

import anyio
from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.server.stdio import stdio_server

from android_ssh_mcp.classifier import CommandClassifier
from android_ssh_mcp.config_manager import ConfigManager
from android_ssh_mcp.constants import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    MAX_COMMAND_TIMEOUT_SECONDS,
    MIN_COMMAND_TIMEOUT_SECONDS,
    SERVER_NAME,
)
from android_ssh_mcp.dispatcher import ToolDispatcher
from android_ssh_mcp.exceptions import AndroidSSHError
from android_ssh_mcp.session import SessionManager

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_INSTRUCTIONS = f"""\
Android SSH MCP Server - Secure SSH access to Android devices.

Use setup to configure your connection.
Use execute_read for safe read-only commands (ls, cat, ps, etc.).
Use execute for commands that modify the system (rm, mkdir, curl, etc.).

## setup
Configure the Android SSH connection. All parameters optional; unspecified
fields keep their current value. Provide host, user, and key_path (or password).
The next command reconnects with the new settings.

## execute_read
Execute SAFE shell commands on Android via SSH. Only commands whose first word is
whitelisted ({{count}} commands) are accepted:
{{whitelist}}
If a command isn't whitelisted, you'll get a not_whitelisted error telling you to
use the execute tool instead.

## execute
Execute ANY shell command on Android via SSH: dumpsys, rm, mv, cp, mkdir, chmod,
pkg install, curl, wget, git, file writes. Always prefer execute_read for safe
commands.

## Command Timeout
Both execute tools accept an optional 'timeout' parameter
({MIN_COMMAND_TIMEOUT_SECONDS}-{MAX_COMMAND_TIMEOUT_SECONDS} seconds, default: \
{DEFAULT_COMMAND_TIMEOUT_SECONDS}). A timed-out command is no longer awaited but is
not killed on the device.
"""


def build_instructions(classifier: CommandClassifier) -> str:
    names = sorted(classifier.whitelist)
    return _INSTRUCTIONS.format(count=len(names), whitelist=", ".join(names))


def _tool_error(exc: AndroidSSHError) -> ToolError:
    return ToolError(f"[{exc.kind}] {exc.message}")


def run_stdio_server(server: FastMCP) -> None:
    async def _run() -> None:
        stdin = anyio.wrap_file(
            TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
        )
        stdout = anyio.wrap_file(
            TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
        )
        async with stdio_server(stdin=stdin, stdout=stdout) as (read_stream, write_stream):
            lowlevel = cast(Any, server)._mcp_server
            await lowlevel.run(
                read_stream,
                write_stream,
                lowlevel.create_initialization_options(),
            )

    try:
        anyio.run(_run)
    except BaseException:
        error_path = Path(gettempdir()) / "mcp-android-ssh-startup-error.log"
        with error_path.open("a", encoding="utf-8") as f:
            f.write("\n" + "=" * 80 + "\n")
            f.write(traceback.format_exc())
        raise


def create_mcp_server(*, config_manager: ConfigManager) -> FastMCP:
    settings = config_manager.settings
    classifier = CommandClassifier()
    session = SessionManager(config_provider=config_manager)
    dispatcher = ToolDispatcher(
        session=session,
        classifier=classifier,
        config_provider=config_manager,
    )

    @asynccontextmanager
    async def lifespan(_app: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await session.disconnect()

    mcp = FastMCP(
        name=SERVER_NAME,
        instructions=build_instructions(classifier),
        log_level=cast(LogLevel, settings.log_level.upper()),
        lifespan=lifespan,
    )

    @mcp.tool(
        description=(
            "Execute safe read-only shell commands on Android via SSH "
            f"({len(classifier.whitelist)} whitelisted commands)"
        )
    )
    async def execute_read(
        *,
        command: str,
        timeout: int | None = None,
    ) -> dict[str, Any]:
        """执行白名单中的只读命令。

        Args:
            command: 要执行的shell命令
            timeout: 超时时间（秒），1~300，默认使用配置值（30）

        Returns:
            dict: 包含stdout、stderr、exit_code和格式化后的output
        """
        try:
            return dict(await dispatcher.execute_read(command, timeout))
        except AndroidSSHError as exc:
            raise _tool_error(exc) from exc

    @mcp.tool(
        description=(
            "Execute any shell command on Android via SSH, "
            "including write/modify/delete operations"
        )
    )
    async def execute(
        *,
        command: str,
        timeout: int | None = None,
    ) -> dict[str, Any]:
        """执行任意shell命令。

        Args:
            command: 要执行的shell命令
            timeout: 超时时间（秒），1~300，默认使用配置值（30）

        Returns:
            dict: 包含stdout、stderr、exit_code和格式化后的output
        """
        try:
            return dict(await dispatcher.execute(command, timeout))
        except AndroidSSHError as exc:
            raise _tool_error(exc) from exc

    @mcp.tool(
        description=(
            "Configure Android SSH connection - provide credentials to connect "
            "to your Android device"
        )
    )
    def setup(
        *,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        key_path: str | None = None,
        password: str | None = None,
    ) -> dict[str, Any]:
        """部分更新连接配置，未提供的字段保持不变。

        Args:
            host: Android设备IP（例如 192.168.1.100）
            port: SSH端口（Termux默认8022）
            user: Termux用户名（在Termux中运行whoami）
            key_path: SSH私钥路径（推荐，例如 ~/.ssh/id_ed25519）
            password: SSH密码（key_path的替代方案）

        Returns:
            dict: 配置文件路径与连接摘要
        """
        try:
            return dict(
                dispatcher.setup(
                    host=host,
                    port=port,
                    user=user,
                    key_path=key_path,
                    password=password,
                )
            )
        except AndroidSSHError as exc:
            raise _tool_error(exc) from exc

    logger.info(
        "MCP server created ({} read-only commands, config: {})",
        len(classifier.whitelist),
        config_manager.config_path,
    )
    return mcp
