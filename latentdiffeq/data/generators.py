"""Dataset generation and on-disk persistence for latent differential equations.

A dataset is the tuple ``(latent, u0s, params, observations)``:

- latent: ground-truth trajectories (n, time, state_dim)
- u0s: initial states (n, state_dim)
- params: system parameters (n, param_dim)
- observations: rendered frames (n, time, obs_dim)
"""

import logging
import os
import zipfile
from typing import NamedTuple, Optional

import numpy as np
import torch
from torch import Tensor

from latentdiffeq.algorithms.lightning.networks.ensemble import ParametrizedField, ParametrizedSDE
from latentdiffeq.systems.base import DynamicalSystem
from latentdiffeq.utils.sampling import time_grid
from latentdiffeq.utils.utils import check_or_make_dirs

from .rendering import Renderer

logger = logging.getLogger(__name__)

DATASET_KEYS = ("latent", "u0s", "params", "observations")


class LatentDataset(NamedTuple):
    latent: Tensor
    u0s: Tensor
    params: Tensor
    observations: Tensor


def integrate(
    system: DynamicalSystem,
    u0s: Tensor,
    params: Tensor,
    t: Tensor,
    rtol: float = 1e-6,
    atol: float = 1e-8,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Ground-truth trajectories (n, time, state_dim) for a batch of problems.

    The vector field is vectorised over the batch, so all samples are
    integrated as one system. Stochastic systems use a Brownian path seeded
    from ``generator``.
    """
    with torch.no_grad():
        if system.is_stochastic:
            import torchsde

            sde = ParametrizedSDE(system, params)
            opts = system.solver_options
            entropy = int(torch.randint(0, 2**31 - 1, (1,), generator=generator).item())
            bm = torchsde.BrownianInterval(
                t0=float(t[0]),
                t1=float(t[-1]),
                size=tuple(u0s.shape),
                dtype=u0s.dtype,
                entropy=entropy,
                levy_area_approximation="space-time",
            )
            solution = torchsde.sdeint(sde, u0s, t, bm=bm, **opts)
        else:
            from torchdiffeq import odeint

            field = ParametrizedField(system, params)
            solution = odeint(field, u0s, t, method=system.method, rtol=rtol, atol=atol)
    return solution.permute(1, 0, 2).contiguous()


def generate_dataset(
    system: DynamicalSystem,
    n_samples: int,
    seq_len: int,
    dt: float,
    renderer: Renderer,
    generator: Optional[torch.Generator] = None,
) -> LatentDataset:
    """Sample initial conditions and parameters, integrate, and render observations."""
    logger.info(f"Generating {n_samples} trajectories of {seq_len} steps for {system!r}")
    u0s = system.sample_initial_conditions(n_samples, generator)
    params = system.sample_parameters(n_samples, generator)
    t = time_grid(seq_len, dt)
    latent = integrate(system, u0s, params, t, generator=generator)
    observations = renderer(system.output_transform(latent), params)
    return LatentDataset(latent, u0s, params, observations.float())


def save_dataset(path: str | os.PathLike, dataset: LatentDataset) -> None:
    check_or_make_dirs(os.path.dirname(os.path.abspath(path)))
    np.savez_compressed(path, **{k: v.detach().cpu().numpy() for k, v in dataset._asdict().items()})
    logger.info(f"Saved dataset to {path}")


def load_dataset(path: str | os.PathLike) -> LatentDataset:
    """Load a dataset written by :func:`save_dataset`.

    Raises:
        OSError: Missing or unreadable file.
        ValueError: Corrupt archive, or arrays with inconsistent shapes.
        KeyError: Archive lacks one of the dataset arrays.
    """
    try:
        with np.load(path) as archive:
            arrays = {k: torch.from_numpy(np.array(archive[k])) for k in DATASET_KEYS}
    except zipfile.BadZipFile as e:
        raise ValueError(f"Corrupt dataset archive {path}: {e}") from e

    n = arrays["latent"].shape[0]
    if any(a.shape[0] != n for a in arrays.values()):
        raise ValueError(f"Inconsistent sample counts in {path}")
    if arrays["latent"].shape[1] != arrays["observations"].shape[1]:
        raise ValueError(f"Latent and observation time axes differ in {path}")
    return LatentDataset(**arrays)


def check_dataset(
    dataset: LatentDataset,
    system: DynamicalSystem,
    n_samples: int,
    seq_len: int,
    renderer: Optional[Renderer] = None,
) -> None:
    """Raise ValueError unless ``dataset`` has the shapes ``system`` and the settings produce."""
    expected = {
        "latent": (n_samples, seq_len, system.state_dim),
        "u0s": (n_samples, system.state_dim),
        "params": (n_samples, system.param_dim),
    }
    obs_dim = getattr(renderer, "obs_dim", None)
    if obs_dim is not None:
        expected["observations"] = (n_samples, seq_len, obs_dim)
    for key, shape in expected.items():
        actual = tuple(getattr(dataset, key).shape)
        if actual != shape:
            raise ValueError(f"Dataset {key} has shape {actual}, expected {shape} for {system!r}")


def load_or_generate(
    path: str | os.PathLike,
    system: DynamicalSystem,
    n_samples: int,
    seq_len: int,
    dt: float,
    renderer: Renderer,
    generator: Optional[torch.Generator] = None,
    regenerate: bool = False,
) -> LatentDataset:
    """Load ``path``; if it is unreadable or does not match ``system`` and the
    requested sizes, generate a fresh dataset and save it there."""
    if not regenerate:
        try:
            dataset = load_dataset(path)
            check_dataset(dataset, system, n_samples, seq_len, renderer)
            logger.info(f"Loaded dataset from {path}")
            return dataset
        except (OSError, ValueError, KeyError, EOFError) as e:
            logger.warning(f"Could not load dataset from {path} ({type(e).__name__}: {e}); regenerating")
    dataset = generate_dataset(system, n_samples, seq_len, dt, renderer, generator)
    save_dataset(path, dataset)
    return dataset
