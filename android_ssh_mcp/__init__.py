"""
Android SSH MCP 远程命令执行工具

基于 MCP 协议，通过 SSH 访问运行 Termux 的 Android 设备：
白名单只读命令通道、完全访问命令通道以及连接配置工具。
"""

__version__ = "0.1.0"

__all__ = [
    "auth_manager",
    "classifier",
    "config_manager",
    "constants",
    "dispatcher",
    "exceptions",
    "logger",
    "mcp_server",
    "session",
    "settings",
    "types",
]
