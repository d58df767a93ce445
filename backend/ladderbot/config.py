# Configuration loading (environment + optional .env file)
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import ValidationError

from ladderbot.exceptions import ConfigurationError
from ladderbot.models import BotConfig, ProfitTier

ROOT_DIR = Path(__file__).resolve().parent.parent

# Env var -> BotConfig field. Values are parsed by the helper named alongside.
_ENV_FIELDS = {
    "BOT_MODE": ("mode", "str"),
    "BOT_ID": ("bot_id", "str"),
    "BINANCE_API_KEY": ("api_key", "str"),
    "BINANCE_API_SECRET": ("api_secret", "str"),
    "BINANCE_TESTNET": ("testnet", "bool"),
    "BOT_SYMBOL": ("symbol", "str"),
    "BOT_INTERVAL": ("interval", "str"),
    "MAX_POSITION_AMOUNT": ("max_position_amount", "float"),
    "STOP_PERCENT": ("stop_percent", "float"),
    "PROFIT_LADDER": ("profit_ladder", "ladder"),
    "CANDLE_LIMIT": ("candle_limit", "int"),
    "POLL_SECONDS": ("poll_seconds", "float"),
    "MAX_RUN_HOURS": ("max_run_hours", "float"),
    "MAX_CONSECUTIVE_FAILURES": ("max_consecutive_failures", "int"),
    "FAILURE_BACKOFF_SECONDS": ("failure_backoff_seconds", "float"),
    "ENTRY_SLIPPAGE": ("entry_slippage", "float"),
    "PRICE_DECIMALS": ("price_decimals", "int"),
    "PAPER_BALANCE": ("paper_balance", "float"),
    "LADDER_STATE_PATH": ("ladder_state_path", "str"),
    "LOG_DIR": ("log_dir", "str"),
}

_TRUE = ("1", "true", "yes", "y", "on")
_FALSE = ("0", "false", "no", "n", "off")


def _env_raw(name: str) -> Optional[str]:
    val = os.getenv(name)
    if val is None or str(val).strip() == "":
        return None
    return str(val).strip()


def _env_str(name: str) -> Optional[str]:
    return _env_raw(name)


def _env_bool(name: str) -> Optional[bool]:
    val = _env_raw(name)
    if val is None:
        return None
    low = val.lower()
    if low in _TRUE:
        return True
    if low in _FALSE:
        return False
    raise ConfigurationError(f"{name}: expected a boolean, got {val!r}")


def _env_int(name: str) -> Optional[int]:
    val = _env_raw(name)
    if val is None:
        return None
    try:
        return int(val)
    except ValueError:
        raise ConfigurationError(f"{name}: expected an integer, got {val!r}") from None


def _env_float(name: str) -> Optional[float]:
    val = _env_raw(name)
    if val is None:
        return None
    try:
        return float(val)
    except ValueError:
        raise ConfigurationError(f"{name}: expected a number, got {val!r}") from None


def parse_profit_ladder(text: str) -> Tuple[ProfitTier, ...]:
    """Parse `delta:tenths,delta:tenths,...` into an ordered ladder.

    `20:1,40:1,60:2` -> tiers closing 10%, 10% and 20% of the max position
    once price moves 20, 40 and 60 in the position's favour.
    """
    tiers = []
    for chunk in str(text or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        parts = chunk.split(":")
        if len(parts) != 2:
            raise ConfigurationError(f"PROFIT_LADDER: bad tier {chunk!r}, expected delta:tenths")
        try:
            tiers.append(ProfitTier.from_tenths(float(parts[0]), float(parts[1])))
        except ValueError as e:
            raise ConfigurationError(f"PROFIT_LADDER: bad tier {chunk!r}: {e}") from None
    if not tiers:
        raise ConfigurationError("PROFIT_LADDER: no tiers configured")
    return tuple(tiers)


_PARSERS = {
    "str": _env_str,
    "bool": _env_bool,
    "int": _env_int,
    "float": _env_float,
}


def load_config(env_file: Optional[str] = None, **overrides) -> BotConfig:
    """Build a validated BotConfig from the environment.

    `env_file` (default `<backend>/.env`) is loaded first without overriding
    variables already set in the process. Keyword overrides win over both.
    Raises ConfigurationError on any invalid or missing value.
    """
    load_dotenv(env_file or (ROOT_DIR / ".env"), override=False)

    values = {}
    for env_name, (field, kind) in _ENV_FIELDS.items():
        if kind == "ladder":
            raw = _env_raw(env_name)
            value = parse_profit_ladder(raw) if raw is not None else None
        else:
            value = _PARSERS[kind](env_name)
        if value is not None:
            values[field] = value

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return BotConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from None
