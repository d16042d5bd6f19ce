"""SSH会话管理模块

管理到单个 Android 设备的唯一一条持久 SSH 连接：
- 显式状态机（DISCONNECTED/CONNECTING/CONNECTED/RECONNECTING），非法迁移直接报错
- 连接失败时按固定次数和固定间隔重试，认证失败与配置错误不重试
- 每次执行命令前透明地检查连接，连接已断开或配置已变更时自动重连
- 命令执行受 asyncio.Lock 串行化，同一时刻只有一条命令占用连接
- 命令超时只停止本地等待并关闭通道，不会终止远端进程，会话保持可用
- 命令执行中的传输层错误会断开会话，命令本身永不自动重试
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Any

import asyncssh
from loguru import logger
from pydantic import SecretStr

from android_ssh_mcp.classifier import first_token
from android_ssh_mcp.config_manager import ConfigManager, ConnectionConfig
from android_ssh_mcp.exceptions import (
    AuthError,
    CommandTimeoutError,
    ConfigError,
    ExecutionError,
    InvalidStateTransition,
    SSHConnectionError,
)
from android_ssh_mcp.settings import AndroidSSHSettings


class SessionState(str, Enum):
    """SSH会话状态。"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING, SessionState.RECONNECTING}),
    SessionState.CONNECTING: frozenset({SessionState.CONNECTED, SessionState.DISCONNECTED}),
    SessionState.CONNECTED: frozenset({SessionState.RECONNECTING, SessionState.DISCONNECTED}),
    SessionState.RECONNECTING: frozenset({SessionState.CONNECTED, SessionState.DISCONNECTED}),
}


def _to_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


def _describe(exc: BaseException | None) -> str:
    if exc is None:
        return "unknown error"
    return str(exc) or type(exc).__name__


@dataclass(frozen=True)
class CommandResult:
    """一次远程命令的执行结果。"""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass
class Credential:
    """会话持有的认证信息。

    私钥优先，配置了密码时作为后备。敏感字段不参与repr，
    断开连接或被替换时调用 wipe() 丢弃所有引用。
    """

    key_path: Path | None = None
    password: SecretStr | None = field(default=None, repr=False)
    key_passphrase: SecretStr | None = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> Credential:
        return cls(
            key_path=config.key_path,
            password=config.password,
            key_passphrase=config.key_passphrase,
        )

    @property
    def auth_mode(self) -> str:
        if self.key_path and self.password:
            return "mixed"
        if self.key_path:
            return "key"
        if self.password:
            return "password"
        return "none"

    def wipe(self) -> None:
        self.key_path = None
        self.password = None
        self.key_passphrase = None


class SessionManager:
    """单连接SSH会话管理器。

    会话及其底层连接由管理器独占，调用方只能通过 connect、
    ensure_connected、execute、disconnect 操作会话。

    Attributes:
        _config: 配置提供者，每次建立连接时重新读取连接参数
        _sleep: 重试等待函数，用于测试注入
    """

    def __init__(
        self,
        *,
        config_provider: ConfigManager,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """初始化会话管理器。

        Args:
            config_provider: 配置提供者
            sleep: 重试等待函数，默认 asyncio.sleep
        """
        self._config = config_provider
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._state = SessionState.DISCONNECTED
        self._conn: asyncssh.SSHClientConnection | None = None
        self._credential: Credential | None = None
        self._target: ConnectionConfig | None = None
        self._config_generation: int | None = None
        self._retry_counter = 0
        self._connect_count = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def connect_count(self) -> int:
        """成功建立连接的累计次数。"""
        return self._connect_count

    @property
    def retry_counter(self) -> int:
        """最近一次连接过程中失败的尝试次数。"""
        return self._retry_counter

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """建立SSH连接。

        已有连接时先关闭旧连接，保证同一时刻最多一条底层连接。

        Raises:
            ConfigError: 配置缺失或私钥文件无效时抛出（不重试）
            AuthError: 凭据被远端拒绝时抛出（不重试）
            SSHConnectionError: 重试次数耗尽后仍无法建立连接时抛出
        """
        async with self._lock:
            await self._connect_locked(SessionState.CONNECTING)

    async def ensure_connected(self) -> None:
        """确保会话处于可用状态（幂等）。

        已连接、连接存活且配置未变更时直接返回；否则经 RECONNECTING
        状态重新建立连接。
        """
        async with self._lock:
            await self._ensure_connected_locked()

    async def execute(self, command: str, timeout: float) -> CommandResult:
        """在当前会话上执行一条命令。

        Args:
            command: 要执行的命令
            timeout: 超时时间（秒），作为硬性截止时间

        Returns:
            CommandResult: 命令的标准输出、标准错误和退出码

        Raises:
            CommandTimeoutError: 命令超时，会话保持连接
            ExecutionError: 命令通道失败，会话进入 DISCONNECTED
        """
        async with self._lock:
            await self._ensure_connected_locked()
            return await self._run_locked(command, timeout)

    async def disconnect(self) -> None:
        """关闭会话（幂等），总是以 DISCONNECTED 状态结束。"""
        async with self._lock:
            conn = self._detach_transport()
            if self._state is not SessionState.DISCONNECTED:
                self._transition(SessionState.DISCONNECTED)
            if conn is not None:
                await self._close_quietly(conn)
                target = self._target
                if target is not None:
                    logger.info("Disconnected from {}:{}", target.host, target.port)
            self._wipe_credential()

    async def _ensure_connected_locked(self) -> None:
        if self._state is SessionState.CONNECTED and self._conn is not None:
            stale = self._config_generation is None or self._config.has_changed(
                self._config_generation
            )
            if not stale and not self._is_connection_dead(self._conn):
                return
            if stale:
                logger.info("Configuration changed, reconnecting SSH session")
            else:
                logger.warning("SSH transport closed, reconnecting")
        await self._connect_locked(SessionState.RECONNECTING)

    async def _connect_locked(self, via: SessionState) -> None:
        if self._state is SessionState.CONNECTED:
            old = self._detach_transport()
            if via is SessionState.RECONNECTING:
                self._transition(SessionState.RECONNECTING)
            else:
                self._transition(SessionState.DISCONNECTED)
            if old is not None:
                await self._close_quietly(old)
        if self._state is not via:
            self._transition(via)

        generation = self._config.generation
        credential: Credential | None = None
        try:
            config = self._config.connection_config()
            credential = Credential.from_config(config)
            client_keys = self._load_client_keys(credential)
            conn = await self._connect_with_retry(config, credential, client_keys)
        except BaseException:
            if credential is not None:
                credential.wipe()
            self._transition(SessionState.DISCONNECTED)
            raise

        self._wipe_credential()
        self._conn = conn
        self._credential = credential
        self._target = config
        self._config_generation = generation
        self._connect_count += 1
        self._transition(SessionState.CONNECTED)

    async def _connect_with_retry(
        self,
        config: ConnectionConfig,
        credential: Credential,
        client_keys: list[asyncssh.SSHKey] | None,
    ) -> asyncssh.SSHClientConnection:
        settings = self._config.settings
        attempts = settings.connect_retry_count
        delay = settings.connect_retry_delay_seconds

        self._retry_counter = 0
        last_exc: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                conn = await self._open_connection(config, credential, client_keys, settings)
            except asyncssh.PermissionDenied as exc:
                logger.error(
                    "SSH authentication rejected for {}@{}:{}",
                    config.user,
                    config.host,
                    config.port,
                )
                raise AuthError(
                    f"Authentication failed for {config.user}@{config.host}:{config.port}: "
                    f"{exc.reason}",
                    host=config.host,
                    username=config.user,
                    details={"auth_mode": credential.auth_mode},
                ) from exc
            except (OSError, asyncssh.Error, asyncio.TimeoutError) as exc:
                last_exc = exc
                self._retry_counter = attempt
                if attempt < attempts:
                    logger.warning(
                        "Connection attempt {}/{} to {}:{} failed ({}), retrying in {}s",
                        attempt,
                        attempts,
                        config.host,
                        config.port,
                        _describe(exc),
                        delay,
                    )
                    await self._sleep(delay)
                continue

            logger.info(
                "Connected to {}:{} as {} (attempt {}, auth={})",
                config.host,
                config.port,
                config.user,
                attempt,
                credential.auth_mode,
            )
            return conn

        logger.error(
            "Giving up on {}:{} after {} attempts: {}",
            config.host,
            config.port,
            attempts,
            _describe(last_exc),
        )
        raise SSHConnectionError(
            f"SSH connection to {config.host}:{config.port} failed after {attempts} attempts: "
            f"{_describe(last_exc)}",
            host=config.host,
            port=config.port,
            attempts=attempts,
            details={"cause": type(last_exc).__name__},
        ) from last_exc

    @staticmethod
    async def _open_connection(
        config: ConnectionConfig,
        credential: Credential,
        client_keys: list[asyncssh.SSHKey] | None,
        settings: AndroidSSHSettings,
    ) -> asyncssh.SSHClientConnection:
        # 私钥先于密码尝试；client_keys/agent_path 为 None 时不加载默认密钥
        options: dict[str, object] = {
            "host": config.host,
            "port": config.port,
            "username": config.user,
            "client_keys": client_keys,
            "agent_path": None,
            "known_hosts": settings.known_hosts,
            "keepalive_interval": settings.keepalive_interval_seconds,
        }
        if credential.password is not None:
            options["password"] = credential.password.get_secret_value()

        connect_task = asyncssh.connect(**options)
        return await asyncio.wait_for(connect_task, timeout=settings.connect_timeout_seconds)

    @staticmethod
    def _load_client_keys(credential: Credential) -> list[asyncssh.SSHKey] | None:
        if credential.key_path is None:
            return None
        passphrase = (
            credential.key_passphrase.get_secret_value()
            if credential.key_passphrase is not None
            else None
        )
        try:
            return [asyncssh.read_private_key(credential.key_path, passphrase)]
        except (OSError, asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as exc:
            raise ConfigError(
                f"Failed to load SSH key {credential.key_path}: {exc}",
                details={"key_path": str(credential.key_path)},
            ) from exc

    async def _run_locked(self, command: str, timeout: float) -> CommandResult:
        conn = self._conn
        if conn is None or self._state is not SessionState.CONNECTED:
            raise ExecutionError("No active SSH session", command=command)

        name = first_token(command)
        processes: list[asyncssh.SSHClientProcess] = []

        async def run() -> asyncssh.SSHCompletedProcess:
            process = await conn.create_process(
                command,
                stdin=asyncssh.DEVNULL,
                encoding="utf-8",
                errors="replace",
            )
            processes.append(process)
            return await process.wait(check=False)

        logger.debug("Executing '{}' (timeout={}s)", name, timeout)
        try:
            completed = await asyncio.wait_for(run(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            # 只放弃本地通道，远端进程可能继续运行
            for process in processes:
                process.close()
            logger.warning("Command '{}' timed out after {}s", name, timeout)
            raise CommandTimeoutError(
                f"Command '{name}' timed out after {timeout:g} seconds",
                command=command,
                timeout_seconds=timeout,
            ) from exc
        except (asyncssh.Error, OSError) as exc:
            for process in processes:
                process.close()
            await self._mark_broken(exc)
            raise ExecutionError(
                f"Command execution failed: {_describe(exc)}",
                command=command,
                details={"cause": type(exc).__name__},
            ) from exc

        exit_code = completed.exit_status if completed.exit_status is not None else -1
        logger.debug("Command '{}' finished with exit code {}", name, exit_code)
        return CommandResult(
            stdout=_to_text(completed.stdout),
            stderr=_to_text(completed.stderr),
            exit_code=exit_code,
        )

    async def _mark_broken(self, exc: BaseException) -> None:
        logger.error("SSH transport failed during command: {}", _describe(exc))
        conn = self._detach_transport()
        self._transition(SessionState.DISCONNECTED)
        if conn is not None:
            await self._close_quietly(conn)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidStateTransition(
                f"Invalid session state transition: {self._state.value} -> {new_state.value}",
                details={"from": self._state.value, "to": new_state.value},
            )
        logger.debug("SSH session state: {} -> {}", self._state.value, new_state.value)
        self._state = new_state

    def _detach_transport(self) -> asyncssh.SSHClientConnection | None:
        conn = self._conn
        self._conn = None
        return conn

    def _wipe_credential(self) -> None:
        if self._credential is not None:
            self._credential.wipe()
            self._credential = None

    @staticmethod
    def _is_connection_dead(conn: asyncssh.SSHClientConnection) -> bool:
        """检查连接是否已关闭或不可用。"""
        try:
            return bool(conn.is_closed())
        except Exception:
            return True

    @staticmethod
    async def _close_quietly(conn: asyncssh.SSHClientConnection) -> None:
        """静默关闭连接，忽略所有异常。"""
        try:
            conn.close()
            await conn.wait_closed()
        except Exception:
            return
