from __future__ import annotations

import numpy as np


def init_log_sd(S, R, guess):
    """Seed log_sd from the spread of log recruitment."""
    if guess.is_unset("log_sd"):
        ok = R > 0
        spread = float(np.std(np.log(R[ok]))) if np.count_nonzero(ok) > 1 else 0.0
        guess.log_sd = float(np.log(spread)) if spread > 0 else 0.0
