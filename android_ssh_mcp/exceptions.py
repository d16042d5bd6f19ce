"""Android SSH MCP 自定义异常模块

定义项目中使用的所有自定义异常类，提供结构化的错误处理。
每个异常携带稳定的 kind 字段，协议层据此向调用方返回错误类型。
异常层次结构：
    AndroidSSHError (基类)
    ├── ConfigError             - 配置缺失或无效（不重试）
    ├── SSHConnectionError      - 连接重试耗尽后仍失败
    ├── AuthError               - 凭据被远端拒绝（不重试）
    ├── CommandTimeoutError     - 命令超时（会话仍可用）
    ├── NotWhitelistedError     - 命令不在只读白名单中
    ├── ValidationError         - 超时参数越界或命令为空
    ├── ExecutionError          - 命令通道在执行中失败（会话断开）
    └── InvalidStateTransition  - 非法的会话状态迁移
"""
from __future__ import annotations

from android_ssh_mcp.types import ErrorDict


class AndroidSSHError(Exception):
    """Android SSH MCP 基础异常类。

    所有自定义异常的基类，提供统一的错误消息格式。

    Attributes:
        kind: 稳定的错误类型标识，供协议层使用
        message: 用户友好的错误描述信息
        details: 可选的附加错误详情字典（不得包含凭据）
    """

    kind: str = "error"

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        """初始化基础异常。

        Args:
            message: 用户友好的错误描述信息
            details: 可选的附加错误详情
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_error_dict(self) -> ErrorDict:
        """将异常转换为结构化的错误字典。

        Returns:
            包含kind、error_type、message和details的字典
        """
        return {
            "kind": self.kind,
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(AndroidSSHError):
    """配置错误。

    凭据缺失、私钥文件不可读或配置文件无法解析时抛出。
    在任何网络操作之前检测，不会重试。
    """

    kind = "config_error"


class SSHConnectionError(AndroidSSHError):
    """SSH连接错误。

    传输层失败（拒绝连接、不可达、握手超时）并耗尽重试次数后抛出。

    Attributes:
        host: 目标主机地址
        port: 目标SSH端口
        attempts: 实际尝试次数
    """

    kind = "connection_error"

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        port: int = 0,
        attempts: int = 0,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"host": host, "port": port, "attempts": attempts, **(details or {})}
        super().__init__(message, details=merged_details)
        self.host = host
        self.port = port
        self.attempts = attempts


class AuthError(AndroidSSHError):
    """认证错误。

    远端拒绝了私钥和密码凭据时抛出。重试不会改变结果，
    还可能触发远端的限流，因此不重试。

    Attributes:
        host: 目标主机地址
        username: SSH用户名
    """

    kind = "auth_error"

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        username: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"host": host, "username": username, **(details or {})}
        super().__init__(message, details=merged_details)
        self.host = host
        self.username = username


class CommandTimeoutError(AndroidSSHError):
    """命令超时错误。

    本地停止等待并关闭通道，远端进程不会被终止，会话保持可用。

    Attributes:
        command: 超时的命令
        timeout_seconds: 超时时间（秒）
    """

    kind = "timeout"

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        timeout_seconds: float = 0,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {
            "command": command,
            "timeout_seconds": timeout_seconds,
            **(details or {}),
        }
        super().__init__(message, details=merged_details)
        self.command = command
        self.timeout_seconds = timeout_seconds


class NotWhitelistedError(AndroidSSHError):
    """命令未列入只读白名单。

    只读通道拒绝执行时抛出，此时未发生任何连接操作。

    Attributes:
        command: 完整命令
        command_name: 命令的首个词
    """

    kind = "not_whitelisted"

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        command_name: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {
            "command": command,
            "command_name": command_name,
            **(details or {}),
        }
        super().__init__(message, details=merged_details)
        self.command = command
        self.command_name = command_name


class ValidationError(AndroidSSHError):
    """参数校验错误。

    超时参数越界或命令为空时抛出，未产生任何副作用。
    """

    kind = "validation_error"


class ExecutionError(AndroidSSHError):
    """命令执行错误。

    命令通道在执行过程中失败（连接断开、通道关闭、协议错误）时抛出。
    会话随之进入 DISCONNECTED 状态，下次调用会重新连接。

    Attributes:
        command: 执行失败的命令
    """

    kind = "execution_error"

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"command": command, **(details or {})}
        super().__init__(message, details=merged_details)
        self.command = command


class InvalidStateTransition(AndroidSSHError):
    """会话状态机收到非法迁移请求（程序错误）。"""

    kind = "internal_error"
