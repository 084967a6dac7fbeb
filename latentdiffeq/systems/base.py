"""
Base class for the dynamical systems that govern the latent space.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import torch
from torch import Tensor

from .sensitivity import Sensitivity, get_sensitivity


class DynamicalSystem(ABC):
    """
    Abstract base class for latent dynamical systems.

    Each system defines:
    1. A vector field ``f(state, params, t) -> d(state)/dt``, vectorised over
       any leading batch axes of ``state`` and ``params``
    2. Default initial state ``u0`` and parameters ``p`` (which fix the state
       and parameter dimensionality)
    3. An integration method, a sensitivity strategy and solver options
    4. Samplers for initial conditions and parameters used to generate data

    Stochastic systems additionally override ``diffusion`` (diagonal noise).
    """

    method: str = "dopri5"
    sde_method: str = "srk"

    def __init__(
        self,
        u0: Tensor,
        p: Tensor,
        sensitivity: str | Sensitivity | None = "direct",
        method: Optional[str] = None,
        rtol: float = 1e-3,
        atol: float = 1e-6,
        options: Optional[Dict[str, Any]] = None,
        sde_dt: float = 5e-3,
    ):
        """
        Args:
            u0: Default initial state, shape (state_dim,).
            p: Default parameters, shape (param_dim,).
            sensitivity: Gradient strategy (name or instance).
            method: Solver name; defaults to the class attribute.
            rtol: Relative tolerance for adaptive ODE solvers.
            atol: Absolute tolerance for adaptive ODE solvers.
            options: Extra solver options forwarded to torchdiffeq.
            sde_dt: Fixed step size for SDE solvers.
        """
        self.u0 = torch.as_tensor(u0, dtype=torch.float32)
        self.p = torch.as_tensor(p, dtype=torch.float32)
        self.sensitivity = get_sensitivity(sensitivity)
        if method is not None:
            if self.is_stochastic:
                self.sde_method = method
            else:
                self.method = method
        self.rtol = rtol
        self.atol = atol
        self.options = dict(options or {})
        self.sde_dt = sde_dt

    @abstractmethod
    def vector_field(self, state: Tensor, params: Tensor, t: Tensor) -> Tensor:
        """
        Time derivative of the state.

        Args:
            state: Tensor [..., state_dim]
            params: Tensor [..., param_dim]
            t: Scalar time tensor

        Returns:
            Tensor [..., state_dim]
        """

    def diffusion(self, state: Tensor, params: Tensor, t: Tensor) -> Optional[Tensor]:
        """Diagonal diffusion term [..., state_dim]; None for deterministic systems."""
        return None

    @property
    def is_stochastic(self) -> bool:
        return type(self).diffusion is not DynamicalSystem.diffusion

    @property
    def state_dim(self) -> int:
        return int(self.u0.numel())

    @property
    def param_dim(self) -> int:
        return int(self.p.numel())

    @property
    def solver_options(self) -> Dict[str, Any]:
        """Keyword options for the ODE (torchdiffeq) or SDE (torchsde) solver."""
        if self.is_stochastic:
            return {"method": self.sde_method, "dt": self.sde_dt}
        opts: Dict[str, Any] = {"method": self.method, "rtol": self.rtol, "atol": self.atol}
        if self.options:
            opts["options"] = dict(self.options)
        return opts

    def output_transform(self, trajectory: Tensor) -> Tensor:
        """Remap solver output before it is decoded. Identity by default."""
        return trajectory

    def sample_initial_conditions(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        """Initial states for data generation, shape (n, state_dim)."""
        return self.u0.expand(n, -1).clone()

    def sample_parameters(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        """Parameters for data generation, shape (n, param_dim)."""
        return self.p.expand(n, -1).clone()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(state_dim={self.state_dim}, param_dim={self.param_dim}, "
            f"method={self.solver_options['method']}, sensitivity={self.sensitivity!r})"
        )


def uniform(
    low: float,
    high: float,
    size: tuple,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Uniform samples in [low, high)."""
    return low + (high - low) * torch.rand(size, generator=generator)
