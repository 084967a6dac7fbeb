"""Latent dynamical systems and the name registry used by configs."""

from typing import Dict, List, Type

from .base import DynamicalSystem
from .kuramoto import Kuramoto
from .pendulum import Pendulum, PendulumFriction, StochasticPendulum
from .sensitivity import BacksolveAdjoint, DirectSensitivity, Sensitivity, get_sensitivity
from .van_der_pol import StochasticVanDerPol, VanDerPol

_SYSTEMS: Dict[str, Type[DynamicalSystem]] = {
    "pendulum": Pendulum,
    "pendulum_friction": PendulumFriction,
    "stochastic_pendulum": StochasticPendulum,
    "van_der_pol": VanDerPol,
    "stochastic_van_der_pol": StochasticVanDerPol,
    "kuramoto": Kuramoto,
}


def list_systems() -> List[str]:
    """Names accepted by :func:`get_system`."""
    return sorted(_SYSTEMS)


def get_system(name: str | DynamicalSystem, **kwargs) -> DynamicalSystem:
    """Build a dynamical system by registry name. Instances pass through unchanged."""
    if isinstance(name, DynamicalSystem):
        return name
    key = name.lower()
    if key not in _SYSTEMS:
        raise ValueError(f"Unknown system: '{name}'. Available: {list_systems()}")
    return _SYSTEMS[key](**kwargs)


__all__ = [
    "BacksolveAdjoint",
    "DirectSensitivity",
    "DynamicalSystem",
    "Kuramoto",
    "Pendulum",
    "PendulumFriction",
    "Sensitivity",
    "StochasticPendulum",
    "StochasticVanDerPol",
    "VanDerPol",
    "get_sensitivity",
    "get_system",
    "list_systems",
]
