"""DhanBridge: application entry point.

Boots the FastAPI internal server and provides the CLI entry point.
"""

import logging

from fastapi import FastAPI

from app.api.routers import router

app = FastAPI(title="DhanBridge Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("dhanbridge")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def build_service(config):
    """Wire the registry, Dhan client, and security master from *config*.

    Returns ``(service, securities)``; the security master is not loaded
    yet, call ``securities.start()`` inside the running event loop.
    """
    from app.accounts.registry import AccountLinkRegistry
    from app.broker.dhan_client import DhanClient
    from app.instruments.security_master import SecurityMaster
    from app.repos.account_repo import AccountRepo
    from app.repos.db import init_db
    from app.service import TradingService

    init_db(config.db_path)
    registry = AccountLinkRegistry(AccountRepo(config.db_path))
    broker = DhanClient(config)
    securities = SecurityMaster(
        url=config.security_master_url,
        path=config.security_master_path,
    )
    return TradingService(registry, broker, securities), securities


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and start the API server."""
    import argparse
    import asyncio

    from app.api.routers import configure_routers
    from app.config import load_config

    parser = argparse.ArgumentParser(description="DhanBridge broker gateway")
    parser.add_argument("--port", type=int, help="API port (default: API_PORT or 8080)")
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    service, securities = build_service(config)
    configure_routers(service=service)

    asyncio.run(_run_server(securities, args.port or config.api_port))


async def _run_server(securities, port: int) -> None:
    """Start the security master load and serve the API."""
    import uvicorn

    securities.start()

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    logger.info("DhanBridge API available at http://localhost:%d", port)
    await server.serve()
    logger.info("DhanBridge stopped.")


if __name__ == "__main__":
    _run_cli()
