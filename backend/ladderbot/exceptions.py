"""
Domain exceptions for the bot.

ConfigurationError is fatal and surfaces once at start-up. DataError and
GatewayError fail the current tick only; the trading loop logs them, counts
them towards the failure backoff and retries on the next cadence.
"""
from typing import Optional


class BotError(Exception):
    """Base error for everything raised by the bot itself."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(BotError):
    """Invalid or missing configuration (bad candle window, missing credentials)."""


class DataError(BotError):
    """An indicator needed for a decision is undefined (warm-up, flat channel)."""


class GatewayError(BotError):
    """Exchange / network failure on any gateway or market-data call."""

    def __init__(self, message: str, code: Optional[int] = None, status_code: Optional[int] = None):
        self.code = code
        self.status_code = status_code
        super().__init__(message)
