"""Ensemble solve: one differential-equation integration per batch sample.

Each sample gets its own initial state and parameters decoded from the latent
space, so the batch cannot be integrated as one system with shared adaptive
steps. Samples are solved independently on a thread pool and merged back into
a batched trajectory tensor. A failed solve only poisons its own slice.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

import torch
import torch.nn as nn
from torch import Tensor

from latentdiffeq.systems.base import DynamicalSystem

logger = logging.getLogger(__name__)


class ParametrizedField(nn.Module):
    """Vector field of ``system`` with parameters fixed to one sample's ``params``.

    Exposes the ``f(t, y)`` signature torchdiffeq expects.
    """

    def __init__(self, system: DynamicalSystem, params: Tensor):
        super().__init__()
        self.system = system
        self.params = params

    def forward(self, t: Tensor, y: Tensor) -> Tensor:
        return self.system.vector_field(y, self.params, t)


class ParametrizedSDE(nn.Module):
    """Itô SDE with diagonal noise in the form torchsde expects.

    torchsde integrates states of shape (batch, state_dim); the ensemble solves
    one sample at a time, so the batch axis here has size 1.
    """

    noise_type = "diagonal"
    sde_type = "ito"

    def __init__(self, system: DynamicalSystem, params: Tensor):
        super().__init__()
        self.system = system
        self.params = params

    def f(self, t: Tensor, y: Tensor) -> Tensor:
        return self.system.vector_field(y, self.params, t)

    def g(self, t: Tensor, y: Tensor) -> Tensor:
        return self.system.diffusion(y, self.params, t)


@dataclass
class TrajectoryResult:
    """Outcome of one sample's solve. ``trajectory`` is None on failure."""

    index: int
    trajectory: Optional[Tensor]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.trajectory is not None


class EnsembleSolver:
    """Solve one initial value problem per sample and stack the results.

    Args:
        system: Dynamical system providing the vector field, solver options
            and sensitivity strategy.
        max_workers: Upper bound on solver threads. ``None`` sizes the pool
            to the batch; ``1`` solves sequentially in the calling thread.
    """

    def __init__(self, system: DynamicalSystem, max_workers: Optional[int] = None):
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be positive or None, got {max_workers}")
        self.system = system
        self.max_workers = max_workers

    def solve_one(self, index: int, z0: Tensor, params: Tensor, t: Tensor) -> TrajectoryResult:
        """Integrate a single sample. Never raises for solver failures."""
        system = self.system
        try:
            if system.is_stochastic:
                sde = ParametrizedSDE(system, params.unsqueeze(0))
                traj = system.sensitivity.sdeint(
                    sde, z0.unsqueeze(0), t, (sde.params,), **system.solver_options
                )[:, 0]
            else:
                field = ParametrizedField(system, params)
                traj = system.sensitivity.odeint(field, z0, t, (params,), **system.solver_options)
        except (AssertionError, RuntimeError) as e:
            return TrajectoryResult(index, None, f"{type(e).__name__}: {e}")
        if not torch.isfinite(traj).all():
            return TrajectoryResult(index, None, "non-finite solution")
        return TrajectoryResult(index, traj)

    def solve(self, z0: Tensor, params: Tensor, t: Tensor) -> List[TrajectoryResult]:
        """Per-sample results, ordered by batch index."""
        batch_size = z0.shape[0]
        grad_enabled = torch.is_grad_enabled()

        # grad mode is thread-local
        def task(i: int) -> TrajectoryResult:
            with torch.set_grad_enabled(grad_enabled):
                return self.solve_one(i, z0[i], params[i], t)

        workers = batch_size if self.max_workers is None else min(batch_size, self.max_workers)
        if workers <= 1:
            return [task(i) for i in range(batch_size)]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(task, range(batch_size)))

    def __call__(self, z0: Tensor, params: Tensor, t: Tensor) -> Tensor:
        """Integrate every sample over ``t``.

        Args:
            z0: Initial states, shape (batch, state_dim).
            params: Parameters, shape (batch, param_dim).
            t: Increasing time grid, shape (time,).

        Returns:
            Tensor (batch, time, state_dim) after the system's output transform.
            Failed samples are all-NaN.
        """
        t = t.to(device=z0.device, dtype=z0.dtype)
        results = self.solve(z0, params, t)

        failed = [r for r in results if not r.ok]
        if failed:
            logger.warning(
                f"{len(failed)}/{len(results)} trajectories failed to integrate "
                f"(indices {[r.index for r in failed]}); filled with NaN"
            )
            for r in failed:
                logger.debug(f"Trajectory {r.index} failed: {r.error}")

        nan_block = torch.full((t.shape[0], z0.shape[-1]), float("nan"), dtype=z0.dtype, device=z0.device)
        trajectories = torch.stack([r.trajectory if r.ok else nan_block for r in results], dim=0)
        return self.system.output_transform(trajectories)
