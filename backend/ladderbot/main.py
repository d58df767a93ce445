"""Process entry point.

Wires config, gateway, optional ladder store and the trading loop, then runs
until the run time is used up or SIGINT/SIGTERM arrives. Exit status is 0 in
both cases; only a configuration problem exits with 1.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional

from ladderbot import __version__
from ladderbot.binance_api import BinanceFuturesAPI
from ladderbot.config import ROOT_DIR, load_config
from ladderbot.exceptions import ConfigurationError
from ladderbot.ladder_store import LadderStore
from ladderbot.models import BotConfig
from ladderbot.paper_broker import PaperBroker
from ladderbot.position_manager import PositionLifecycleManager, TickContext
from ladderbot.trading_loop import TradingLoop

logger = logging.getLogger(__name__)

_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class _SecretMaskingFilter(logging.Filter):
    """Redact API credentials from log messages before they hit any handler."""
    _MASK = "***REDACTED***"

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s and len(s) > 4]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        msg = record.getMessage()
        masked = msg
        for secret in self.secrets:
            masked = masked.replace(secret, self._MASK)
        if masked != msg:
            record.msg = masked
            record.args = None
        return True


def configure_logging(cfg: Optional[BotConfig] = None) -> None:
    """Console + daily rotating file, secrets masked. Console only without a config."""
    formatter = logging.Formatter(_LOG_FORMAT)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [console_handler]

    if cfg is not None:
        mask = _SecretMaskingFilter((cfg.api_key, cfg.api_secret))
        console_handler.addFilter(mask)
        log_dir = Path(cfg.log_dir)
        if not log_dir.is_absolute():
            log_dir = ROOT_DIR / log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=str(log_dir / 'bot.log'),
            when='midnight',
            interval=1,
            backupCount=7,
            encoding='utf-8',
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(mask)
        handlers.append(file_handler)

    logging.basicConfig(level=logging.INFO, handlers=handlers, force=True)

    # Per-request logs from the http client are noise at a 60s cadence
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run_bot(cfg: BotConfig, stop_event: Optional[asyncio.Event] = None) -> int:
    market = BinanceFuturesAPI(
        api_key=cfg.api_key,
        api_secret=cfg.api_secret,
        testnet=cfg.testnet,
        price_decimals=cfg.price_decimals,
    )
    try:
        if cfg.mode == "live":
            gateway = market
        else:
            gateway = PaperBroker(market, cfg.symbol, balance=cfg.paper_balance)

        store = None
        if cfg.ladder_state_path:
            store = LadderStore(cfg.ladder_state_path)
            await store.init()

        manager = PositionLifecycleManager(gateway, market, ladder_store=store)
        trading_loop = TradingLoop(manager, TickContext.from_config(cfg))

        # ── graceful shutdown ─────────────────────────────────────────────────
        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM, getattr(signal, "SIGQUIT", None)):
            if sig is not None:
                loop.add_signal_handler(sig, stop_event.set)

        logger.info(
            f"[BOT] ladderbot {__version__} starting | Id={cfg.bot_id} Mode={cfg.mode} "
            f"Testnet={cfg.testnet} Endpoint={market.base_url}"
        )
        return await trading_loop.run(stop_event)
    finally:
        await market.close()
        logger.info("[BOT] Shutdown complete")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ladderbot", description="Single-instrument futures ladder bot")
    parser.add_argument("--env-file", default=None, help="dotenv file to load (default: backend/.env)")
    parser.add_argument("--mode", choices=("paper", "live"), default=None, help="override BOT_MODE")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config(args.env_file, mode=args.mode)
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"[BOT] {e.message}")
        return 1

    configure_logging(cfg)
    try:
        asyncio.run(run_bot(cfg))
    except ConfigurationError as e:
        logger.error(f"[BOT] {e.message}")
        return 1
    except KeyboardInterrupt:
        logger.info("[BOT] Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
