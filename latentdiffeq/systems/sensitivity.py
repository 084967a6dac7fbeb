"""Gradient-propagation strategies for differential-equation solves.

A sensitivity strategy decides how gradients of a loss flow back through a
numerical integration. The decoder never looks inside: it hands the strategy a
vector field module, an initial state, a time grid and the tensors that
gradients must reach, and gets a trajectory back.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import torch.nn as nn
from torch import Tensor


class Sensitivity(ABC):
    """Base class for sensitivity (adjoint) strategies."""

    @abstractmethod
    def odeint(
        self,
        func: nn.Module,
        y0: Tensor,
        t: Tensor,
        params: Sequence[Tensor],
        **solver_kwargs: Any,
    ) -> Tensor:
        """Integrate ``dy/dt = func(t, y)`` and return the solution at ``t``."""

    @abstractmethod
    def sdeint(
        self,
        sde: nn.Module,
        y0: Tensor,
        t: Tensor,
        params: Sequence[Tensor],
        **solver_kwargs: Any,
    ) -> Tensor:
        """Integrate a torchsde SDE module and return the solution at ``t``."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class DirectSensitivity(Sensitivity):
    """Backpropagate through the solver's internal operations.

    Memory grows with the number of solver steps, but gradients are exact for
    the discretised problem. Cheap when the parameter count is small.
    """

    def odeint(self, func, y0, t, params, **solver_kwargs):
        from torchdiffeq import odeint

        return odeint(func, y0, t, **solver_kwargs)

    def sdeint(self, sde, y0, t, params, **solver_kwargs):
        import torchsde

        return torchsde.sdeint(sde, y0, t, **solver_kwargs)


class BacksolveAdjoint(Sensitivity):
    """Solve the adjoint system backward in time for O(1) memory backprop.

    ``params`` are registered as adjoint parameters, so gradients reach the
    per-sample parameters produced by the decoder even though they are not
    ``nn.Parameter`` attributes of the vector field.

    Args:
        adjoint_rtol: Relative tolerance of the backward solve (ODE only).
            Defaults to the forward tolerance.
        adjoint_atol: Absolute tolerance of the backward solve (ODE only).
    """

    def __init__(self, adjoint_rtol: Optional[float] = None, adjoint_atol: Optional[float] = None):
        self.adjoint_rtol = adjoint_rtol
        self.adjoint_atol = adjoint_atol

    def odeint(self, func, y0, t, params, **solver_kwargs):
        from torchdiffeq import odeint_adjoint

        if self.adjoint_rtol is not None:
            solver_kwargs["adjoint_rtol"] = self.adjoint_rtol
        if self.adjoint_atol is not None:
            solver_kwargs["adjoint_atol"] = self.adjoint_atol
        return odeint_adjoint(func, y0, t, adjoint_params=tuple(params), **solver_kwargs)

    def sdeint(self, sde, y0, t, params, **solver_kwargs):
        import torchsde

        return torchsde.sdeint_adjoint(sde, y0, t, adjoint_params=tuple(params), **solver_kwargs)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(adjoint_rtol={self.adjoint_rtol}, "
            f"adjoint_atol={self.adjoint_atol})"
        )


SENSITIVITIES = {
    "direct": DirectSensitivity,
    "adjoint": BacksolveAdjoint,
    "backsolve": BacksolveAdjoint,
}


def get_sensitivity(name: str | Sensitivity | None) -> Sensitivity:
    """Resolve a sensitivity by name; instances pass through unchanged."""
    if isinstance(name, Sensitivity):
        return name
    if name is None:
        return DirectSensitivity()
    key = name.lower()
    if key not in SENSITIVITIES:
        raise ValueError(f"Unknown sensitivity: '{name}'. Available: {sorted(SENSITIVITIES)}")
    return SENSITIVITIES[key]()
