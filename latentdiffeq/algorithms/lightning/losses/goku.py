"""Reconstruction + annealed KL objective for GOKU-net."""

from typing import Dict, Sequence

import torch
import torch.nn as nn
from torch import Tensor

from .mse import vector_mse


def kl_divergence(mu: Tensor, logvar: Tensor) -> Tensor:
    """Elementwise KL(N(mu, exp(logvar)) || N(0, 1))."""
    return 0.5 * (torch.exp(logvar) + mu**2 - 1.0 - logvar)


def vector_kl(mu: Sequence[Tensor], logvar: Sequence[Tensor]) -> Tensor:
    """KL of grouped diagonal-Gaussian posteriors against a standard normal.

    Each group is (batch, latent_dim); per group the KL is summed over latent
    dims and averaged over the batch, then the groups are added.
    """
    if len(mu) != len(logvar):
        raise ValueError(f"Got {len(mu)} mean groups but {len(logvar)} log-variance groups")
    total = None
    for m, lv in zip(mu, logvar):
        group = kl_divergence(m, lv).sum(dim=-1).mean()
        total = group if total is None else total + group
    if total is None:
        raise ValueError("vector_kl needs at least one latent group")
    return total


class GOKULoss(nn.Module):
    """``recon + beta * kl``.

    ``beta`` is passed per call so the training loop owns the annealing
    schedule. NaN reconstructions (failed integrations) are not masked.
    """

    def components(self, outputs, targets, mu=None, logvar=None, **_) -> Dict[str, Tensor]:
        recon = vector_mse(outputs, targets)
        if mu is None or logvar is None:
            return {"recon": recon, "kl": recon.new_tensor(0.0)}
        return {"recon": recon, "kl": vector_kl(mu, logvar)}

    def forward(self, outputs, targets, beta: float = 1.0, **extras) -> Tensor:
        comps = self.components(outputs, targets, **extras)
        return comps["recon"] + beta * comps["kl"]
