"""Exact arithmetic used by every sampling decision."""
from .dyadic import ONE, ZERO, Dyadic
from .bounds import (
    ONE_INTERVAL,
    ZERO_INTERVAL,
    DyadicInterval,
    PowerBase,
    cumulative,
    interval_sum,
    shared_power_base,
)

__all__ = [
    "Dyadic",
    "ZERO",
    "ONE",
    "DyadicInterval",
    "ZERO_INTERVAL",
    "ONE_INTERVAL",
    "PowerBase",
    "cumulative",
    "interval_sum",
    "shared_power_base",
]
