# Domain types shared by indicators, policy, gateway and loop
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def entry_order_side(self) -> "OrderSide":
        return OrderSide.BUY if self is PositionSide.LONG else OrderSide.SELL

    @property
    def close_order_side(self) -> "OrderSide":
        return OrderSide.SELL if self is PositionSide.LONG else OrderSide.BUY


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class Candle:
    open_time: int  # ms since epoch, as returned by the exchange
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class IndicatorRow:
    """Indicators for one candle index. NaN marks an undefined value."""
    true_range: float
    atr: float
    slope_angle: float
    channel_high: float
    channel_low: float
    position_in_channel: float
    is_local_high: bool
    is_local_low: bool


@dataclass(frozen=True)
class ProfitTier:
    price_delta: float  # favourable move from entry, in price units
    contract_fraction: float  # share of max position closed when the tier fires

    def __post_init__(self):
        if self.price_delta < 0:
            raise ValueError(f"price_delta must be >= 0, got {self.price_delta}")
        if not (0 < self.contract_fraction <= 1):
            raise ValueError(f"contract_fraction must be in (0, 1], got {self.contract_fraction}")

    @classmethod
    def from_tenths(cls, price_delta: float, tenths: float) -> "ProfitTier":
        """Build a tier from the `delta:tenths` notation (1 tenth = 10% of max position)."""
        return cls(price_delta=float(price_delta), contract_fraction=float(tenths) / 10.0)


DEFAULT_PROFIT_LADDER: Tuple[ProfitTier, ...] = tuple(
    ProfitTier.from_tenths(delta, tenths)
    for delta, tenths in ((20, 1), (40, 1), (60, 2), (80, 2), (100, 2), (150, 1), (200, 1))
)


@dataclass(frozen=True)
class PositionSnapshot:
    """Gateway view of the position for one symbol. `quantity` keeps the exchange sign."""
    symbol: str
    side: Optional[PositionSide]
    quantity: float = 0.0
    entry_price: float = 0.0
    unrealized_profit: float = 0.0
    wallet_balance: float = 0.0
    leverage: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.side is not None


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    time_in_force: str = "GTC"
    reason: str = ""


VALID_INTERVALS = (
    "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "8h", "12h",
    "1d", "3d", "1w", "1M",
)


class BotConfig(BaseModel):
    """Validated, immutable runtime configuration."""
    model_config = ConfigDict(frozen=True)

    mode: str = "paper"
    bot_id: str = "ladderbot"
    api_key: str = ""
    api_secret: str = ""
    testnet: bool = True

    symbol: str = "BTCUSDT"
    interval: str = "1m"
    max_position_amount: float = Field(default=0.01, gt=0)
    stop_percent: float = Field(default=0.02, gt=0, lt=1)
    profit_ladder: Tuple[ProfitTier, ...] = DEFAULT_PROFIT_LADDER
    candle_limit: int = Field(default=103, gt=2)

    poll_seconds: float = Field(default=60.0, gt=0)
    max_run_hours: float = Field(default=12.0, gt=0)
    max_consecutive_failures: int = Field(default=5, ge=1)
    failure_backoff_seconds: float = Field(default=240.0, ge=0)

    entry_slippage: float = Field(default=0.01, ge=0, lt=0.5)
    price_decimals: int = Field(default=2, ge=0, le=8)
    paper_balance: float = Field(default=10000.0, ge=0)

    ladder_state_path: str = ""
    log_dir: str = "logs"

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, v: str) -> str:
        v = str(v or "").strip().lower()
        if v not in ("paper", "live"):
            raise ValueError(f"mode must be 'paper' or 'live', got {v!r}")
        return v

    @field_validator("symbol")
    @classmethod
    def _check_symbol(cls, v: str) -> str:
        v = str(v or "").strip().upper()
        if not v:
            raise ValueError("symbol is required")
        return v

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, v: str) -> str:
        v = str(v or "").strip()
        if v not in VALID_INTERVALS:
            raise ValueError(f"unsupported interval {v!r}")
        return v

    @model_validator(mode="after")
    def _check_credentials(self) -> "BotConfig":
        if self.mode == "live" and not (self.api_key and self.api_secret):
            raise ValueError("live mode requires BINANCE_API_KEY and BINANCE_API_SECRET")
        return self

    @property
    def max_run_seconds(self) -> float:
        return self.max_run_hours * 3600.0
