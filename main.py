from loguru import logger

from android_ssh_mcp.config_manager import ConfigManager
from android_ssh_mcp.logger import setup_logger
from android_ssh_mcp.mcp_server import create_mcp_server, run_stdio_server


def main() -> int:
    config_manager = ConfigManager.load()
    setup_logger(config_manager.settings)
    if config_manager.first_run:
        logger.warning(
            "Config template created at {}; edit it or call the setup tool",
            config_manager.config_path,
        )
    server = create_mcp_server(config_manager=config_manager)
    run_stdio_server(server)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
