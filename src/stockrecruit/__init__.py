"""stockrecruit public API."""
import jax

# Likelihood values and their derivatives are compared at double precision.
jax.config.update("jax_enable_x64", True)

from .inference import Objective, build_objective, neg_loglike_lognormal  # noqa: E402
from .inputs import StockRecruitData  # noqa: E402
from .model import Model  # noqa: E402
from .run import Run, Results  # noqa: E402
from . import models  # noqa: E402

__all__ = [
    "Model",
    "Objective",
    "Results",
    "Run",
    "StockRecruitData",
    "build_objective",
    "models",
    "neg_loglike_lognormal",
]
