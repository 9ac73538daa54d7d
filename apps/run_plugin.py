from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from typing import AsyncIterator

from sample_datasource.runtime.host import PluginHost
from sample_datasource.runtime.stdio import StdioServer
from sample_datasource.utils.logger import get_logger, init_logging, log_exception, log_info

logger = get_logger(__name__)


async def _stdin_lines() -> AsyncIterator[str]:
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return
        yield line


async def main(plugin_name: str) -> None:
    host = PluginHost()
    server = StdioServer(host, plugin_name=plugin_name)
    log_info(logger, "plugin.start", plugin_name=plugin_name)
    await server.serve(_stdin_lines())
    log_info(logger, "plugin.stop", plugin_name=plugin_name)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Serve the sample datasource over stdin/stdout.")
    parser.add_argument("--plugin-name", default="sample-datasource")
    parser.add_argument("--log-config", default="configs/logging.json")
    parser.add_argument("--log-profile", default=None)
    args = parser.parse_args()

    init_logging(args.log_config, run_id=uuid.uuid4().hex[:8], mode=args.log_profile)
    try:
        asyncio.run(main(args.plugin_name))
    except KeyboardInterrupt:
        pass
    except Exception:
        # failing to serve the host is the only process-fatal condition
        log_exception(logger, "plugin.fatal")
        sys.exit(1)
