"""Channel/slope entry bot with a tiered profit ladder for one futures symbol.

Modules are split by responsibility:

- `indicators.py` / `signal_detector.py` are calculation-only.
- `exit_policy.py` owns ladder progress and the stop-loss rule.
- `position_manager.py` runs one tick against the gateway.
- `trading_loop.py` drives ticks until timeout or interrupt.
"""

__version__ = "0.3.0"
