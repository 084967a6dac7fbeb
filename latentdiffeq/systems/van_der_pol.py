from typing import Optional

import torch
from torch import Tensor

from .base import DynamicalSystem, uniform


class VanDerPol(DynamicalSystem):
    """Network of ``k`` coupled van der Pol oscillators.

    State is ``[x1 (k), x2 (k)]`` and parameters are ``[a1 (k), a2 (k), W (k*k)]``
    with ``W`` stored column-major::

        dx1 = a1 * x1 * (1 - x1**2) + a2 * x2 + W @ x1
        dx2 = -x1

    Args:
        k: Number of oscillators.
        param_noise: Std of the per-oscillator perturbation of ``a1`` and ``a2``
            around their nominal values (0.6 and 10), both for the default
            parameters and for sampled ones.
        seed: Seed for the default parameters, initial state and coupling.
    """

    def __init__(
        self,
        k: int = 2,
        param_noise: float = 0.1,
        seed: Optional[int] = None,
        sensitivity="direct",
        **kwargs,
    ):
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        generator = torch.Generator()
        if seed is not None:
            generator.manual_seed(seed)
        else:
            generator.seed()
        a1 = 0.6 + param_noise * torch.randn(k, generator=generator)
        a2 = 10.0 + param_noise * torch.randn(k, generator=generator)
        coupling = torch.rand(k * k, generator=generator)
        u0 = torch.rand(2 * k, generator=generator)
        super().__init__(u0=u0, p=torch.cat([a1, a2, coupling]), sensitivity=sensitivity, **kwargs)
        self.k = k
        self.param_noise = param_noise

    def split_params(self, params: Tensor) -> tuple[Tensor, Tensor, Tensor]:
        """Split ``[..., 2k + k*k]`` into ``a1``, ``a2`` and the (k, k) coupling matrix."""
        k = self.k
        a1, a2 = params[..., :k], params[..., k : 2 * k]
        coupling = params[..., 2 * k :].reshape(*params.shape[:-1], k, k).transpose(-1, -2)
        return a1, a2, coupling

    def vector_field(self, state: Tensor, params: Tensor, t: Tensor) -> Tensor:
        k = self.k
        x1, x2 = state[..., :k], state[..., k:]
        a1, a2, coupling = self.split_params(params)
        wx = (coupling @ x1.unsqueeze(-1)).squeeze(-1)
        dx1 = a1 * x1 * (1 - x1**2) + a2 * x2 + wx
        return torch.cat([dx1, -x1], dim=-1)

    def sample_initial_conditions(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        return uniform(0.0, 1.0, (n, self.state_dim), generator=generator)

    def sample_parameters(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        k = self.k
        a1 = 0.6 + self.param_noise * torch.randn((n, k), generator=generator)
        a2 = 10.0 + self.param_noise * torch.randn((n, k), generator=generator)
        coupling = self.p[2 * k :].expand(n, -1)
        return torch.cat([a1, a2, coupling], dim=-1)


class StochasticVanDerPol(VanDerPol):
    """Coupled van der Pol network with multiplicative diagonal noise ``scale * u``."""

    def __init__(self, k: int = 2, noise_scale: float = 0.2, param_noise: float = 0.2, **kwargs):
        super().__init__(k=k, param_noise=param_noise, **kwargs)
        self.noise_scale = noise_scale

    def diffusion(self, state: Tensor, params: Tensor, t: Tensor) -> Tensor:
        return self.noise_scale * state
