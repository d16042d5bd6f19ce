"""日志配置模块

stdout 被 MCP stdio 协议占用，日志只写入文件，以及交互终端下的 stderr。
所有记录在写出前经过脱敏，形如 password=xxx 的值替换为 ***。
"""
from __future__ import annotations

import re
import sys
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from loguru import logger

from android_ssh_mcp.settings import AndroidSSHSettings

_SECRET_PATTERN = re.compile(
    r"(?i)\b(password|passwd|passphrase|token|secret)(\s*[:=]\s*)(\S+)"
)

_FALLBACK_LOG_DIR = Path(gettempdir()) / "mcp-android-ssh-logs"

# (文件名, 最低级别)，None 表示使用配置的日志级别
_FILE_SINKS: tuple[tuple[str, str | None], ...] = (
    ("app.log", None),
    ("error.log", "ERROR"),
)


def redact(text: str) -> str:
    return _SECRET_PATTERN.sub(r"\1\2***", text)


def _redact_record(record: Any) -> None:
    record["message"] = redact(record.get("message", ""))


def _resolve_log_dir(preferred: Path) -> Path:
    try:
        preferred.mkdir(parents=True, exist_ok=True)
        return preferred
    except OSError:
        _FALLBACK_LOG_DIR.mkdir(parents=True, exist_ok=True)
        return _FALLBACK_LOG_DIR


def setup_logger(settings: AndroidSSHSettings) -> Path:
    """按配置重建 loguru 的全部 sink。

    Args:
        settings: 提供日志级别、目录、轮转与保留策略

    Returns:
        实际使用的日志目录（配置目录不可写时回退到临时目录）
    """
    log_dir = _resolve_log_dir(Path(settings.log_dir))

    logger.remove()
    logger.configure(patcher=_redact_record)

    if getattr(sys.stderr, "isatty", lambda: False)():
        logger.add(
            sys.stderr,
            level=settings.log_level,
            colorize=True,
            backtrace=False,
            diagnose=False,
            enqueue=True,
        )

    for file_name, level in _FILE_SINKS:
        logger.add(
            str(log_dir / file_name),
            level=level or settings.log_level,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
            enqueue=True,
            backtrace=False,
            diagnose=False,
            encoding="utf-8",
        )

    logger.debug("Logging to {}", log_dir)
    return log_dir
