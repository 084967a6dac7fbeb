import math
from typing import Optional

import torch
from torch import Tensor

from .base import DynamicalSystem, uniform


class Pendulum(DynamicalSystem):
    """Frictionless pendulum. State (angle, angular velocity), parameter (length,).

    d(angle)/dt = velocity
    d(velocity)/dt = -g / L * sin(angle)
    """

    def __init__(
        self,
        gravity: float = 10.0,
        length_range: tuple[float, float] = (1.0, 2.0),
        angle_range: tuple[float, float] = (-math.pi / 2, math.pi / 2),
        velocity_range: tuple[float, float] = (-1.0, 1.0),
        sensitivity="adjoint",
        **kwargs,
    ):
        super().__init__(u0=[1.0, 1.0], p=[1.0], sensitivity=sensitivity, **kwargs)
        self.gravity = gravity
        self.length_range = tuple(length_range)
        self.angle_range = tuple(angle_range)
        self.velocity_range = tuple(velocity_range)

    def vector_field(self, state: Tensor, params: Tensor, t: Tensor) -> Tensor:
        angle, velocity = state[..., 0], state[..., 1]
        length = params[..., 0]
        return torch.stack([velocity, -self.gravity / length * torch.sin(angle)], dim=-1)

    def sample_initial_conditions(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        angle = uniform(*self.angle_range, (n,), generator=generator)
        velocity = uniform(*self.velocity_range, (n,), generator=generator)
        return torch.stack([angle, velocity], dim=-1)

    def sample_parameters(self, n: int, generator: Optional[torch.Generator] = None) -> Tensor:
        return uniform(*self.length_range, (n, 1), generator=generator)


class PendulumFriction(Pendulum):
    """Pendulum with linear friction ``-(b / m) * velocity``."""

    def __init__(self, mass: float = 1.0, friction: float = 0.7, sensitivity="direct", **kwargs):
        super().__init__(sensitivity=sensitivity, **kwargs)
        self.mass = mass
        self.friction = friction

    def vector_field(self, state: Tensor, params: Tensor, t: Tensor) -> Tensor:
        derivative = super().vector_field(state, params, t)
        damping = torch.zeros_like(derivative)
        damping[..., 1] = (self.friction / self.mass) * state[..., 1]
        return derivative - damping


class StochasticPendulum(Pendulum):
    """Frictionless pendulum driven by constant diagonal Itô noise."""

    def __init__(self, noise: float = 0.01, sensitivity="direct", **kwargs):
        super().__init__(sensitivity=sensitivity, **kwargs)
        self.noise = noise

    def diffusion(self, state: Tensor, params: Tensor, t: Tensor) -> Tensor:
        return torch.full_like(state, self.noise)
