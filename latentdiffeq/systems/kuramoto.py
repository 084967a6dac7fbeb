import math
from typing import Optional

import torch
from torch import Tensor

from .base import DynamicalSystem, uniform


class Kuramoto(DynamicalSystem):
    """Globally coupled Kuramoto phase oscillators.

    State is the phase vector ``theta (k)``; parameters are the natural
    frequencies ``omega (k)`` followed by the coupling strength ``K``::

        dtheta_i = omega_i + K / k * sum_j sin(theta_j - theta_i)

    Phases grow without bound, so trajectories are passed through ``sin``
    before decoding.
    """

    def __init__(
        self,
        k: int = 3,
        frequency_range: tuple[float, float] = (0.5, 2.0),
        coupling_range: tuple[float, float] = (0.0, 2.0),
        sensitivity="direct",
        **kwargs,
    ):
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        u0 = torch.linspace(0.0, math.pi, k)
        p = torch.cat([torch.ones(k), torch.ones(1)])
        super().__init__(u0=u0, p=p, sensitivity=sensitivity, **kwargs)
        self.k = k
        self.frequency_range = tuple(frequency_range)
        self.coupling_range = tuple(coupling_range)

    def vector_field(self, state: Tensor, params: Tensor, t: Tensor) -> Tensor:
        omega, coupling = params[..., : self.k], params[..., self.k :]
        # phase_diff[..., i, j] = theta_j - theta_i
        phase_diff = state.unsqueeze(-2) - state.unsqueeze(-1)
        return omega + coupling / self.k * torch.sin(phase_diff).sum(dim=-1)

    def output_transform(self, trajectory: Tensor) -> Tensor:
        return torch.sin(trajectory)

    def sample_initial_conditions(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        return uniform(0.0, 2 * math.pi, (n, self.k), generator=generator)

    def sample_parameters(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        omega = uniform(*self.frequency_range, (n, self.k), generator=generator)
        coupling = uniform(*self.coupling_range, (n, 1), generator=generator)
        return torch.cat([omega, coupling], dim=-1)
