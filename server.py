#!/usr/bin/env python3
"""
Free subdomain registry - process entry point
Wires configuration, the Cloudflare adapter and the ledger backend into the
registration workflow and serves it over HTTP until a shutdown signal arrives.
"""

import os
import asyncio
import logging
import signal

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, (os.getenv('LOG_LEVEL') or 'INFO').upper(), logging.INFO)
)

# SECURITY: keep request URLs and headers out of INFO logs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

from api_handler import create_app, start_api_server, stop_api_server
from registry_config import RegistryConfig
from services.cloudflare import CloudflareService
from services.ledger_store import LedgerStoreFactory
from services.registration_orchestrator import RegistrationWorkflow


def build_workflow(config: RegistryConfig) -> RegistrationWorkflow:
    """Construct adapters from configuration and inject them into the workflow"""
    dns = CloudflareService(config)
    ledger = LedgerStoreFactory.create(config)
    return RegistrationWorkflow(dns=dns, ledger=ledger, config=config)


async def main():
    config = RegistryConfig.from_env()
    workflow = build_workflow(config)
    app = create_app(config, workflow)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    runner = await start_api_server(app, config.host, config.port)
    try:
        await shutdown.wait()
        logger.info("🛑 Shutdown signal received, stopping...")
    finally:
        await stop_api_server(runner)
        await CloudflareService.close_client()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
