from __future__ import annotations

import sys

from loguru import logger

from android_ssh_mcp.config_manager import ConfigManager
from android_ssh_mcp.constants import SERVER_NAME
from android_ssh_mcp.exceptions import ConfigError
from android_ssh_mcp.logger import setup_logger
from android_ssh_mcp.mcp_server import create_mcp_server


def main() -> int:
    """
    Android SSH MCP 服务器主入口（console script: android-ssh-mcp）

    使用 FastMCP 标准启动方式 (mcp.run(transport="stdio"))
    """
    # 1. 加载配置，首次运行时生成配置模板
    try:
        config_manager = ConfigManager.load()
    except ConfigError as exc:
        print(f"配置加载失败: {exc.message}", file=sys.stderr)
        return 2

    # 2. 设置日志（stdout 留给协议）
    log_dir = setup_logger(config_manager.settings)
    if config_manager.first_run:
        logger.warning(ConfigManager.first_run_message(config_manager.config_path))
    logger.info("Starting {} (logs: {})", SERVER_NAME, log_dir)

    # 3. 创建并运行 MCP 服务器
    mcp = create_mcp_server(config_manager=config_manager)
    mcp.run(transport="stdio")
    return 0


if __name__ == "__main__":
    sys.exit(main())
