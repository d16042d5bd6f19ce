"""SSH命令分类与参数校验模块

提供只读通道的准入判断：
- 按命令首个词（区分大小写）精确匹配只读白名单
- 命令超时参数的范围校验（1~300秒，越界直接拒绝，不做截断）
- 空命令校验

已知限制：通过 `&&`、`|` 拼接的复合命令只按第一个词分类，
例如 `ls && rm -rf /` 会被判定为只读。真正的安全边界是远端账户自身的权限。
"""
from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from android_ssh_mcp.constants import MAX_COMMAND_TIMEOUT_SECONDS, MIN_COMMAND_TIMEOUT_SECONDS
from android_ssh_mcp.exceptions import ValidationError

READ_ONLY_COMMANDS: frozenset[str] = frozenset(
    {
        # 文件查看
        "ls", "cat", "head", "tail", "less", "more", "grep", "rg", "find", "fd",
        "tree", "bat", "eza", "exa", "locate",
        # 路径操作
        "cd", "pwd", "readlink", "realpath", "basename", "dirname",
        # 身份与系统信息
        "whoami", "id", "groups", "which", "whereis", "type", "hostname", "uname",
        "date", "uptime",
        # 输出
        "echo", "printf",
        # 进程监控
        "ps", "top", "htop", "btop", "lsof",
        # 磁盘与文件系统
        "df", "du", "lsblk", "blkid", "stat", "file",
        # 内存与性能
        "free", "vmstat", "iostat", "iotop", "lsmem", "lshw", "lscpu",
        # 网络监控
        "netstat", "ss", "ping", "traceroute", "nslookup", "dig", "host",
        # 文本处理
        "wc", "sort", "uniq", "cut", "paste", "tr", "column",
        # 比较
        "diff", "cmp", "comm",
        # 校验和
        "md5sum", "sha1sum", "sha256sum", "sha512sum",
        # 环境信息
        "env", "printenv", "getent", "getconf",
        # 二进制查看
        "xxd", "hexdump", "od", "strings",
        # 压缩文件查看
        "zcat", "bzcat", "xzcat", "gunzip", "bunzip2", "unxz",
        # 数据解析
        "jq", "yq", "xmllint",
        # 日志
        "journalctl",
        # 硬件与内核模块
        "lsmod", "modinfo", "lspci", "lsusb",
        # Shell 信息
        "history", "alias",
        # 字体
        "fc-list", "fc-match",
        # 测试与空命令
        "test", "true", "false",
    }
)


class CommandClass(str, Enum):
    """命令分类结果。"""

    READ_ONLY = "read_only"
    WRITE_CAPABLE = "write_capable"


def first_token(command: str) -> str:
    """返回命令去除首尾空白后的第一个词，空命令返回空字符串。"""
    parts = command.strip().split(maxsplit=1)
    return parts[0] if parts else ""


class CommandClassifier:
    """只读白名单分类器。

    Attributes:
        _whitelist: 只读命令名集合，构造后不可变
    """

    def __init__(self, *, whitelist: Iterable[str] = READ_ONLY_COMMANDS) -> None:
        self._whitelist: frozenset[str] = frozenset(whitelist)

    @property
    def whitelist(self) -> frozenset[str]:
        return self._whitelist

    def classify(self, command: str) -> CommandClass:
        """对命令进行分类。

        仅查看首个词，不解析引号和 shell 操作符。

        Args:
            command: 待分类的命令字符串

        Returns:
            CommandClass: 首个词在白名单中为 READ_ONLY，否则为 WRITE_CAPABLE
        """
        if first_token(command) in self._whitelist:
            return CommandClass.READ_ONLY
        return CommandClass.WRITE_CAPABLE

    def is_read_only(self, command: str) -> bool:
        return self.classify(command) is CommandClass.READ_ONLY


def validate_timeout(timeout: int) -> int:
    """校验命令超时参数。

    Args:
        timeout: 超时时间（秒）

    Returns:
        校验通过的超时时间

    Raises:
        ValidationError: 不是整数或不在 [1, 300] 范围内时抛出
    """
    if isinstance(timeout, bool) or not isinstance(timeout, int):
        raise ValidationError(
            f"Timeout must be an integer number of seconds, got {timeout!r}",
            details={"timeout": repr(timeout)},
        )
    if not MIN_COMMAND_TIMEOUT_SECONDS <= timeout <= MAX_COMMAND_TIMEOUT_SECONDS:
        raise ValidationError(
            f"Timeout must be between {MIN_COMMAND_TIMEOUT_SECONDS} and "
            f"{MAX_COMMAND_TIMEOUT_SECONDS} seconds",
            details={"timeout": timeout},
        )
    return timeout


def validate_command(command: str) -> str:
    """校验命令非空，返回去除首尾空白后的命令。"""
    cmd = command.strip()
    if not cmd:
        raise ValidationError("Command must not be empty")
    return cmd
