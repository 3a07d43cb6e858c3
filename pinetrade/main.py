"""PineTrade — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
the serve, loop, and run-once modes.
"""

import logging

from fastapi import FastAPI

from pinetrade.api.routers import router

app = FastAPI(title="PineTrade Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("pinetrade")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def build_scheduler(config):
    """Wire repositories and Binance gateways into a ``BatchScheduler``."""
    from pinetrade.exchange.binance_client import BinanceMarketData, BinanceOrderClient
    from pinetrade.repos.db import init_db
    from pinetrade.repos.strategy_repo import StrategyRepo
    from pinetrade.repos.trade_repo import TradeRepo
    from pinetrade.repos.user_repo import UserRepo
    from pinetrade.scheduler import BatchScheduler

    init_db(config.db_path)
    return BatchScheduler(
        config=config,
        users=UserRepo(config.db_path),
        strategies=StrategyRepo(config.db_path),
        trades=TradeRepo(config.db_path),
        market_data=BinanceMarketData(config),
        orders=BinanceOrderClient(config),
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import json
    import signal

    from pinetrade.api.routers import configure_routers
    from pinetrade.config import load_config

    parser = argparse.ArgumentParser(description="PineTrade strategy execution engine")
    parser.add_argument(
        "--mode",
        choices=["serve", "loop", "run-once"],
        default="serve",
        help="serve: API + timer loop; loop: timer loop only; "
             "run-once: a single pass (default: serve)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between passes (overrides PASS_INTERVAL_SECONDS)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    scheduler = build_scheduler(config)
    configure_routers(scheduler=scheduler, scheduler_token=config.scheduler_token)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping after current pass.")
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    if args.mode == "run-once":
        report = asyncio.run(scheduler.run_pass())
        print(json.dumps(report.to_dict(), indent=2))
    elif args.mode == "loop":
        asyncio.run(_run_loop(scheduler, args.interval))
    else:
        asyncio.run(_run_server_and_loop(scheduler, config.api_port, args.interval))


async def _run_loop(scheduler, interval) -> None:
    """Run timed passes, publishing each report to the API status."""
    from pinetrade.api.routers import record_report

    logger.info("Starting PineTrade pass loop.")
    await scheduler.run_forever(
        interval=interval,
        on_report=lambda report: record_report(report.to_dict()),
    )
    logger.info("PineTrade pass loop stopped.")


async def _run_server_and_loop(scheduler, port: int, interval) -> None:
    """Start the API server and the pass loop concurrently."""
    import asyncio
    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    logger.info("API available at http://localhost:%d", port)
    results = await asyncio.gather(
        server.serve(),
        _run_loop(scheduler, interval),
        return_exceptions=True,
    )
    logger.info("PineTrade stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()
