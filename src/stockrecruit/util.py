from __future__ import annotations

import inspect
from typing import Any, Callable, Sequence, Tuple


def infer_param_names(
    func: Callable[..., Any], fixed_inputs: Sequence[str] = ()
) -> Tuple[str, ...]:
    """Infer curve parameter names from a function signature.

    Conventions:
    - first arg is spawning biomass (S)
    - names listed in `fixed_inputs` are data scalars (e.g. g), not parameters
    - remaining positional/keyword parameters are curve parameters

    No *args/**kwargs in curve functions.
    """
    sig = inspect.signature(func)
    params = list(sig.parameters.values())

    if len(params) < 2:
        raise TypeError("Curve function must have at least (S, p1, ...).")

    bad_kinds = {inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD}
    for p in params:
        if p.kind in bad_kinds:
            raise TypeError("*args/**kwargs are not supported in curve functions.")

    names = [p.name for p in params[1:] if p.name not in fixed_inputs]
    missing = [n for n in fixed_inputs if n not in sig.parameters]
    if missing:
        raise TypeError(f"Fixed inputs {missing} are not arguments of the curve function.")
    if len(set(names)) != len(names):
        raise TypeError("Duplicate parameter names in function signature.")
    if "log_sd" in names:
        raise TypeError("'log_sd' is reserved for the observation-error scale.")
    return tuple(names)
