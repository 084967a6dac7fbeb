"""Building blocks for the GOKU encoder and decoder.

Dense residual stacks extract per-frame features and map latent states back to
observation space; stateful recurrent stacks summarise feature sequences.
"""

from typing import Optional

import torch
import torch.nn as nn
from torch import Tensor

ACTIVATIONS = {
    "relu": nn.ReLU,
    "tanh": nn.Tanh,
    "sigmoid": nn.Sigmoid,
    "softplus": nn.Softplus,
    "identity": nn.Identity,
}


def get_activation(name: str | nn.Module | None) -> nn.Module:
    """Activation module by name; modules pass through, ``None`` is identity."""
    if name is None:
        return nn.Identity()
    if isinstance(name, nn.Module):
        return name
    key = name.lower()
    if key not in ACTIVATIONS:
        raise ValueError(f"Unknown activation: '{name}'. Available: {sorted(ACTIVATIONS)}")
    return ACTIVATIONS[key]()


class ResidualBlock(nn.Module):
    """``x + relu(W x + b)`` with matching input and output width."""

    def __init__(self, dim: int):
        super().__init__()
        self.linear = nn.Linear(dim, dim)
        self.activation = nn.ReLU()

    def forward(self, x: Tensor) -> Tensor:
        return x + self.activation(self.linear(x))


def residual_mlp(
    input_dim: int,
    hidden_dim: int,
    output_dim: int,
    n_blocks: int = 2,
    output_activation: str | nn.Module | None = "relu",
) -> nn.Sequential:
    """Dense(in, hidden, relu) -> n_blocks residual blocks -> Dense(hidden, out, activation).

    Applied to the last axis only, so a (batch, time, in) sequence is mapped
    frame by frame without temporal mixing.
    """
    layers: list[nn.Module] = [nn.Linear(input_dim, hidden_dim), nn.ReLU()]
    layers.extend(ResidualBlock(hidden_dim) for _ in range(n_blocks))
    layers.extend([nn.Linear(hidden_dim, output_dim), get_activation(output_activation)])
    return nn.Sequential(*layers)


def latent_projection(
    latent_dim: int,
    hidden_dim: int,
    output_dim: int,
    output_activation: str | nn.Module | None = None,
) -> nn.Sequential:
    """Dense(latent, hidden, relu) -> Dense(hidden, out, activation)."""
    return nn.Sequential(
        nn.Linear(latent_dim, hidden_dim),
        nn.ReLU(),
        nn.Linear(hidden_dim, output_dim),
        get_activation(output_activation),
    )


class StatefulRecurrent(nn.Module):
    """Stacked RNN or LSTM that keeps its hidden state across calls.

    The state left by one call is the initial state of the next, until
    :meth:`reset` clears it. Callers decide where sequence boundaries are.

    Args:
        input_dim: Feature size of each time step.
        hidden_dim: Hidden and output size of every layer.
        cell: "rnn" (relu nonlinearity) or "lstm".
        num_layers: Number of stacked recurrent layers.
    """

    def __init__(self, input_dim: int, hidden_dim: int, cell: str = "lstm", num_layers: int = 2):
        super().__init__()
        cell = cell.lower()
        if cell == "rnn":
            self.rnn = nn.RNN(input_dim, hidden_dim, num_layers=num_layers, nonlinearity="relu", batch_first=True)
        elif cell == "lstm":
            self.rnn = nn.LSTM(input_dim, hidden_dim, num_layers=num_layers, batch_first=True)
        else:
            raise ValueError(f"Unknown recurrent cell: '{cell}'. Expected 'rnn' or 'lstm'")
        self.cell = cell
        self.state: Optional[Tensor | tuple[Tensor, Tensor]] = None

    def forward(self, x: Tensor) -> Tensor:
        """Run over a (batch, time, input_dim) sequence; returns (batch, time, hidden_dim)."""
        out, self.state = self.rnn(x, self.state)
        return out

    def reset(self) -> None:
        self.state = None
