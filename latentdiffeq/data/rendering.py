"""Observation renderers: latent trajectories -> high-dimensional frames."""

import logging
from typing import Optional

import numpy as np
import torch
from torch import Tensor

logger = logging.getLogger(__name__)


class Renderer:
    """Maps latent trajectories (n, time, state_dim) and parameters (n, param_dim)
    to observations (n, time, obs_dim)."""

    def __call__(self, latent: Tensor, params: Tensor) -> Tensor:
        raise NotImplementedError


class PendulumRenderer(Renderer):
    """Grayscale images of a pendulum: a rod from the image centre and a round bob.

    The angle is the first state coordinate (0 hangs straight down) and the
    rod length is the first parameter, scaled so ``max_length`` reaches the
    image border.

    Args:
        size: Image height and width in pixels.
        max_length: Pendulum length mapped to the full radius of the image.
        rod_width: Half-width of the rod in normalised image units.
        bob_radius: Radius of the bob in normalised image units.
    """

    def __init__(
        self,
        size: int = 28,
        max_length: float = 2.0,
        rod_width: float = 0.06,
        bob_radius: float = 0.15,
    ):
        self.size = size
        self.max_length = max_length
        self.rod_width = rod_width
        self.bob_radius = bob_radius
        coords = np.linspace(-1.0, 1.0, size, dtype=np.float32)
        # rows grow downwards
        ys, xs = np.meshgrid(coords, coords, indexing="ij")
        self._pixels = np.stack([xs.ravel(), ys.ravel()], axis=-1)

    @property
    def obs_dim(self) -> int:
        return self.size * self.size

    def render(self, angles: np.ndarray, length: float) -> np.ndarray:
        """Frames (time, size * size) for one pendulum."""
        reach = (1.0 - self.bob_radius) * min(length / self.max_length, 1.0)
        tips = reach * np.stack([np.sin(angles), np.cos(angles)], axis=-1)  # (time, 2)

        # distance from every pixel to the rod segment [0, tip]
        pixels = self._pixels[None]  # (1, P, 2)
        seg = tips[:, None, :]  # (time, 1, 2)
        seg_len2 = np.maximum((seg**2).sum(-1), 1e-12)
        proj = np.clip((pixels * seg).sum(-1) / seg_len2, 0.0, 1.0)
        rod_dist = np.linalg.norm(pixels - proj[..., None] * seg, axis=-1)
        bob_dist = np.linalg.norm(pixels - seg, axis=-1)

        frames = (rod_dist <= self.rod_width) | (bob_dist <= self.bob_radius)
        return frames.astype(np.float32)

    def __call__(self, latent: Tensor, params: Tensor) -> Tensor:
        angles = latent[..., 0].detach().cpu().numpy()
        lengths = params[..., 0].detach().cpu().numpy()
        frames = np.stack([self.render(a, float(l)) for a, l in zip(angles, lengths)])
        return torch.from_numpy(frames)


class ProjectionRenderer(Renderer):
    """Fixed random linear map of the state followed by a sigmoid.

    Works for any system; the map is drawn once per state dimension from
    ``seed``.
    """

    def __init__(self, obs_dim: int = 64, scale: float = 1.0, seed: int = 0):
        self.obs_dim = obs_dim
        self.scale = scale
        self.seed = seed
        self._weight: Optional[Tensor] = None
        self._bias: Optional[Tensor] = None

    def _projection(self, state_dim: int) -> tuple[Tensor, Tensor]:
        if self._weight is None or self._weight.shape[0] != state_dim:
            generator = torch.Generator().manual_seed(self.seed)
            self._weight = self.scale * torch.randn(state_dim, self.obs_dim, generator=generator)
            self._bias = 0.1 * torch.randn(self.obs_dim, generator=generator)
        return self._weight, self._bias

    def __call__(self, latent: Tensor, params: Tensor) -> Tensor:
        weight, bias = self._projection(latent.shape[-1])
        return torch.sigmoid(latent.float() @ weight + bias)


_RENDERERS = {
    "pendulum": PendulumRenderer,
    "projection": ProjectionRenderer,
}


def get_renderer(name: str | Renderer, **kwargs) -> Renderer:
    if isinstance(name, Renderer):
        return name
    key = name.lower()
    if key not in _RENDERERS:
        raise ValueError(f"Unknown renderer: '{name}'. Available: {sorted(_RENDERERS)}")
    return _RENDERERS[key](**kwargs)


def default_renderer_name(system_name: str) -> str:
    """Pendulum systems are rendered as images, everything else is projected."""
    return "pendulum" if "pendulum" in system_name.lower() else "projection"
