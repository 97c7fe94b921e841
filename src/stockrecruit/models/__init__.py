"""Stock-recruitment curve families."""

from .beverton_holt import beverton_holt, beverton_holt_func
from .hockey_stick import (
    hockey_stick,
    hockey_stick_direct,
    hockey_stick_direct_func,
    hockey_stick_func,
    hockey_stick_shape,
)
from .ricker import ricker, ricker_func

__all__ = [
    "beverton_holt",
    "beverton_holt_func",
    "hockey_stick",
    "hockey_stick_direct",
    "hockey_stick_direct_func",
    "hockey_stick_func",
    "hockey_stick_shape",
    "ricker",
    "ricker_func",
]
