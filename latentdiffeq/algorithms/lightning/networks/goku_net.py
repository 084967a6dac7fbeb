"""GOKU-net: encode -> sample -> integrate -> decode.

Network components for the GOKU architecture. This is the nn.Module (the
network), not the training wrapper; see ``algorithms/lightning/goku.py``.

Reference: Linial et al., "Generative ODE Modeling with Known Unknowns",
arXiv:2003.10775 (2020)
"""

import logging
from typing import NamedTuple, Optional

import torch
import torch.nn as nn
from torch import Tensor

from latentdiffeq.systems import DynamicalSystem, get_system

from .ensemble import EnsembleSolver
from .layers import StatefulRecurrent, latent_projection, residual_mlp

logger = logging.getLogger(__name__)


class LatentPair(NamedTuple):
    """Initial-state and parameter components of a latent quantity."""

    z0: Tensor
    theta: Tensor


def _linear_dims(module: nn.Module) -> tuple[Optional[int], Optional[int]]:
    """(in_features of the first Linear, out_features of the last Linear) in ``module``."""
    linears = [m for m in module.modules() if isinstance(m, nn.Linear)]
    if not linears:
        return None, None
    return linears[0].in_features, linears[-1].out_features


def _check_dims(name: str, module: nn.Module, expected_in: int, expected_out: int) -> None:
    in_features, out_features = _linear_dims(module)
    if in_features is not None and in_features != expected_in:
        raise ValueError(f"{name} expects {in_features} input features, got {expected_in}")
    if out_features is not None and out_features != expected_out:
        raise ValueError(f"{name} produces {out_features} features, expected {expected_out}")


def reparameterize(mu: Tensor, logvar: Tensor, generator: Optional[torch.Generator] = None) -> Tensor:
    """``mu + eps * exp(logvar / 2)`` with fresh standard-normal ``eps``."""
    if mu.shape != logvar.shape:
        raise ValueError(f"mu and logvar shapes differ: {tuple(mu.shape)} vs {tuple(logvar.shape)}")
    eps = torch.randn(mu.shape, generator=generator, device=mu.device, dtype=mu.dtype)
    return mu + eps * torch.exp(0.5 * logvar)


def sample(mu: LatentPair, logvar: LatentPair, generator: Optional[torch.Generator] = None) -> LatentPair:
    """Reparameterised draw for both latent groups independently."""
    return LatentPair(
        reparameterize(mu.z0, logvar.z0, generator),
        reparameterize(mu.theta, logvar.theta, generator),
    )


class Encoder(nn.Module):
    """Observation sequence -> posterior moments of (z0, theta).

    Frames pass through a residual feature extractor one at a time. A relu RNN
    reads the time-reversed features to summarise the initial state; forward
    and backward LSTMs summarise the time-invariant parameters. Recurrent state
    is cleared at the end of every call.

    Args:
        input_dim: Observation features per frame.
        hidden_dim: Width of the residual feature extractor.
        rnn_input_dim: Feature size handed to the recurrent layers.
        rnn_output_dim: Hidden size of the recurrent layers.
        latent_dim: Size of each latent group.
    """

    def __init__(
        self,
        input_dim: int,
        hidden_dim: int = 200,
        rnn_input_dim: int = 32,
        rnn_output_dim: int = 16,
        latent_dim: int = 16,
    ):
        super().__init__()
        self.input_dim = input_dim
        self.latent_dim = latent_dim

        self.feature_extractor = residual_mlp(input_dim, hidden_dim, rnn_input_dim, output_activation="relu")

        self.pe_z0 = StatefulRecurrent(rnn_input_dim, rnn_output_dim, cell="rnn")
        self.pe_theta_forward = StatefulRecurrent(rnn_input_dim, rnn_output_dim, cell="lstm")
        self.pe_theta_backward = StatefulRecurrent(rnn_input_dim, rnn_output_dim, cell="lstm")

        self.mu_z0 = nn.Linear(rnn_output_dim, latent_dim)
        self.logvar_z0 = nn.Linear(rnn_output_dim, latent_dim)
        self.mu_theta = nn.Linear(2 * rnn_output_dim, latent_dim)
        self.logvar_theta = nn.Linear(2 * rnn_output_dim, latent_dim)

    def extract_features(self, x: Tensor) -> Tensor:
        """(batch, time, input_dim) -> (batch, time, rnn_input_dim), frame by frame."""
        return self.feature_extractor(x)

    def extract_patterns(self, features: Tensor) -> tuple[Tensor, Tensor]:
        """Last recurrent outputs for the initial state and the parameters."""
        reversed_features = features.flip(1)
        try:
            z0_out = self.pe_z0(reversed_features)[:, -1]
            theta_forward = self.pe_theta_forward(features)[:, -1]
            theta_backward = self.pe_theta_backward(reversed_features)[:, -1]
        finally:
            self.reset()
        return z0_out, torch.cat([theta_forward, theta_backward], dim=-1)

    def reset(self) -> None:
        self.pe_z0.reset()
        self.pe_theta_forward.reset()
        self.pe_theta_backward.reset()

    def forward(self, x: Tensor) -> tuple[LatentPair, LatentPair]:
        if x.shape[-1] != self.input_dim:
            raise ValueError(f"Encoder expects {self.input_dim} features per frame, got {x.shape[-1]}")
        z0_out, theta_out = self.extract_patterns(self.extract_features(x))
        mu = LatentPair(self.mu_z0(z0_out), self.mu_theta(theta_out))
        logvar = LatentPair(self.logvar_z0(z0_out), self.logvar_theta(theta_out))
        return mu, logvar


class Decoder(nn.Module):
    """Latent sample -> (reconstruction, latent trajectory, decoded (z0, theta)).

    ``latent_out_z0``, ``latent_out_theta`` and ``reconstructor`` default to
    the standard dense stacks; custom modules may be passed instead and are
    checked against the system's state and parameter sizes.

    Args:
        output_dim: Observation features per frame.
        system: Dynamical system (instance or registry name) governing the latent space.
        latent_dim: Size of each latent group.
        latent_to_diffeq_dim: Hidden width of the latent projections.
        hidden_dim: Width of the residual reconstructor.
        theta_activation: Activation keeping decoded parameters in range.
        output_activation: Final activation of the reconstructor.
        max_workers: Thread cap for the ensemble solve.
    """

    def __init__(
        self,
        output_dim: int,
        system: DynamicalSystem | str,
        latent_dim: int = 16,
        latent_to_diffeq_dim: int = 200,
        hidden_dim: int = 200,
        theta_activation: str = "softplus",
        output_activation: str = "sigmoid",
        max_workers: Optional[int] = None,
        latent_out_z0: Optional[nn.Module] = None,
        latent_out_theta: Optional[nn.Module] = None,
        reconstructor: Optional[nn.Module] = None,
    ):
        super().__init__()
        self.system = get_system(system)
        self.latent_dim = latent_dim
        state_dim, param_dim = self.system.state_dim, self.system.param_dim

        self.latent_out_z0 = latent_out_z0 or latent_projection(latent_dim, latent_to_diffeq_dim, state_dim)
        self.latent_out_theta = latent_out_theta or latent_projection(
            latent_dim, latent_to_diffeq_dim, param_dim, output_activation=theta_activation
        )
        self.reconstructor = reconstructor or residual_mlp(
            state_dim, hidden_dim, output_dim, output_activation=output_activation
        )
        _check_dims("latent_out_z0", self.latent_out_z0, latent_dim, state_dim)
        _check_dims("latent_out_theta", self.latent_out_theta, latent_dim, param_dim)
        _check_dims("reconstructor", self.reconstructor, state_dim, output_dim)

        self.diffeq = EnsembleSolver(self.system, max_workers=max_workers)

    def latent_out(self, latent: LatentPair) -> LatentPair:
        """Project latent samples into the system's state and parameter spaces."""
        return LatentPair(self.latent_out_z0(latent.z0), self.latent_out_theta(latent.theta))

    def diffeq_layer(self, decoded: LatentPair, t: Tensor) -> Tensor:
        """Ensemble solve; (batch, time, state_dim) with NaN rows for failed samples."""
        return self.diffeq(decoded.z0, decoded.theta, t)

    def reconstruct(self, z: Tensor) -> Tensor:
        return self.reconstructor(z)

    def forward(self, latent: LatentPair, t: Tensor) -> tuple[Tensor, Tensor, LatentPair]:
        decoded = self.latent_out(latent)
        z_hat = self.diffeq_layer(decoded, t)
        x_hat = self.reconstruct(z_hat)
        return x_hat, z_hat, decoded


class GOKUNetwork(nn.Module):
    """Complete GOKU-net: Encoder, reparameterised sampling and Decoder.

    Args:
        input_dim: Observation features per frame.
        system: Dynamical system (instance or registry name).
        system_kwargs: Keyword arguments when ``system`` is a name.
        hidden_dim: Width of the residual feature extractor and reconstructor.
        rnn_input_dim: Feature size handed to the recurrent layers.
        rnn_output_dim: Hidden size of the recurrent layers.
        latent_dim: Size of each latent group.
        latent_to_diffeq_dim: Hidden width of the latent projections.
        theta_activation: Activation on decoded parameters.
        output_activation: Final activation of the reconstructor.
        max_workers: Thread cap for the ensemble solve.
    """

    def __init__(
        self,
        input_dim: int,
        system: DynamicalSystem | str = "pendulum",
        system_kwargs: Optional[dict] = None,
        hidden_dim: int = 200,
        rnn_input_dim: int = 32,
        rnn_output_dim: int = 16,
        latent_dim: int = 16,
        latent_to_diffeq_dim: int = 200,
        theta_activation: str = "softplus",
        output_activation: str = "sigmoid",
        max_workers: Optional[int] = None,
        encoder: Optional[Encoder] = None,
        decoder: Optional[Decoder] = None,
    ):
        super().__init__()
        if isinstance(system, str):
            system = get_system(system, **dict(system_kwargs or {}))
        self.system = system
        self.input_dim = input_dim

        self.encoder = encoder or Encoder(input_dim, hidden_dim, rnn_input_dim, rnn_output_dim, latent_dim)
        self.decoder = decoder or Decoder(
            input_dim,
            system,
            latent_dim=latent_dim,
            latent_to_diffeq_dim=latent_to_diffeq_dim,
            hidden_dim=hidden_dim,
            theta_activation=theta_activation,
            output_activation=output_activation,
            max_workers=max_workers,
        )
        if self.encoder.latent_dim != self.decoder.latent_dim:
            raise ValueError(
                f"Encoder latent_dim ({self.encoder.latent_dim}) does not match "
                f"decoder latent_dim ({self.decoder.latent_dim})"
            )
        if self.decoder.system is not system:
            logger.warning("Decoder was built for a different system instance than the network")

    def forward(
        self,
        x: Tensor,
        t: Tensor,
        variational: bool = True,
        generator: Optional[torch.Generator] = None,
    ) -> tuple[tuple[Tensor, Tensor, LatentPair], LatentPair, LatentPair]:
        """Full forward: encode -> sample -> integrate -> decode.

        Args:
            x: (batch, time, input_dim) observations.
            t: (time,) evaluation times matching the time axis of ``x``.
            variational: Sample the posterior; otherwise decode the mean.
            generator: Optional random source for the posterior draw.

        Returns:
            ((x_hat, z_hat, (z0_hat, theta_hat)), mu, logvar) with x_hat
            (batch, time, input_dim) and z_hat (batch, time, state_dim).
        """
        if x.shape[1] != t.shape[0]:
            raise ValueError(f"Observations have {x.shape[1]} time steps but the grid has {t.shape[0]}")
        mu, logvar = self.encoder(x)
        latent = sample(mu, logvar, generator) if variational else mu
        x_hat, z_hat, decoded = self.decoder(latent, t)
        return (x_hat, z_hat, decoded), mu, logvar

    def infer(self, x: Tensor) -> LatentPair:
        """Decoded posterior means (z0_hat, theta_hat) without integrating."""
        mu, _ = self.encoder(x)
        return self.decoder.latent_out(mu)
