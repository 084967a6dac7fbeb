import torch
from hydra_zen import builds, store
from omegaconf import DictConfig, OmegaConf

from .lightning.goku import GOKU
from .lightning.losses.goku import GOKULoss
from .lightning.networks.goku_net import GOKUNetwork

network_store = store(group="algorithms/network")
optimizer_store = store(group="algorithms/optimizer")

goku_network_config = builds(
    GOKUNetwork,
    input_dim=None,
    populate_full_signature=True,
)
network_store(goku_network_config, name="goku")

adamw_config = builds(
    torch.optim.AdamW,
    lr=1e-3,
    betas=(0.9, 0.999),
    weight_decay=1e-3,
    zen_partial=True,
    hydra_convert="all",
)
optimizer_store(adamw_config, name="adamw")

goku_loss_config = builds(GOKULoss)


def make_network_config(input_dim: int, system: str, **overrides) -> DictConfig:
    """Structured GOKUNetwork config with ``input_dim`` and ``system`` filled in."""
    cfg = OmegaConf.structured(goku_network_config)
    cfg.input_dim = input_dim
    cfg.system = system
    for key, value in overrides.items():
        cfg[key] = value
    return cfg


def make_optimizer_config(lr: float, weight_decay: float) -> DictConfig:
    """The stored AdamW partial with ``lr`` and ``weight_decay`` filled in."""
    cfg = OmegaConf.structured(adamw_config)
    cfg.lr = lr
    cfg.weight_decay = weight_decay
    return cfg


def make_loss_config() -> DictConfig:
    return OmegaConf.structured(goku_loss_config)


__all__ = [
    "GOKU",
    "GOKULoss",
    "GOKUNetwork",
    "make_loss_config",
    "make_network_config",
    "make_optimizer_config",
]
