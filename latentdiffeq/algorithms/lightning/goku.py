"""GOKU LightningModule training wrapper.

Trains a GOKU-net on observation sequences with a cyclically annealed KL term
and optional progressive (curriculum) sequence lengths. Uses manual
optimization so the held-out set can be evaluated after every minibatch step.
"""

import functools
import logging
from typing import Optional

import hydra_zen
import numpy as np
import torch
import torch.nn as nn
from lightning.pytorch import LightningModule
from omegaconf import DictConfig
from torch import Tensor

from latentdiffeq.utils.sampling import time_grid, time_loader
from latentdiffeq.utils.schedules import frange_cycle_linear, progressive_seq_lengths, seq_len_for_epoch

from .losses.goku import GOKULoss
from .networks.goku_net import LatentPair

logger = logging.getLogger(__name__)


class GOKU(LightningModule):
    """Lightning training wrapper for GOKU-net.

    Args:
        network: Hydra config or instantiated GOKUNetwork.
        optimizer: Hydra config or functools.partial for the optimizer.
        loss: Hydra config or instantiated loss; defaults to GOKULoss.
        datamodule: Data module providing ``val_data`` for per-step validation.
        init_seed: Random seed for weight initialization.
        dt: Time between consecutive frames.
        variational: Sample the posterior during training.
        epochs: Length of the annealing schedule; defaults to ``trainer.max_epochs``.
        start_beta: KL weight at the start of each annealing cycle.
        end_beta: KL weight held at the end of each cycle.
        n_cycle: Number of annealing cycles.
        ratio: Fraction of each cycle spent ramping.
        seq_len: Training window length (final length under curriculum).
        progressive_training: Grow the window from ``start_seq_len``.
        prog_training_duration: Epochs over which the window grows.
        start_seq_len: Window length at the first epoch under curriculum.
        validate_every_step: Evaluate the held-out set after every optimizer step.
    """

    def __init__(
        self,
        network,
        optimizer,
        loss=None,
        datamodule=None,
        init_seed: int = 42,
        dt: float = 0.05,
        variational: bool = True,
        # KL annealing
        epochs: Optional[int] = None,
        start_beta: float = 0.0,
        end_beta: float = 1.0,
        n_cycle: int = 4,
        ratio: float = 0.9,
        # Curriculum
        seq_len: int = 50,
        progressive_training: bool = False,
        prog_training_duration: int = 200,
        start_seq_len: int = 10,
        validate_every_step: bool = True,
    ):
        super().__init__()
        self.automatic_optimization = False

        self.datamodule = datamodule
        self.network_config = network
        self.optimizer_config = optimizer
        self.loss_config = loss
        self.init_seed = init_seed
        self.dt = dt
        self.variational = variational

        self.epochs = epochs
        self.start_beta = start_beta
        self.end_beta = end_beta
        self.n_cycle = n_cycle
        self.ratio = ratio

        self.seq_len = seq_len
        self.progressive_training = progressive_training
        self.prog_training_duration = prog_training_duration
        self.start_seq_len = start_seq_len
        self.validate_every_step = validate_every_step

        self.curriculum: Optional[np.ndarray] = None
        if progressive_training:
            self.curriculum = progressive_seq_lengths(start_seq_len, seq_len, prog_training_duration)
        self.annealing_schedule: Optional[np.ndarray] = None

        self.beta = float(start_beta)
        self.current_seq_len = seq_len_for_epoch(0, seq_len, self.curriculum)
        self.last_val_loss: Optional[float] = None

        self.save_hyperparameters(ignore=["datamodule", "network", "optimizer", "loss"])
        self.network: nn.Module | None = None
        self.loss_fn: nn.Module | None = None

    def setup(self, stage=None):
        """Infer input_dim from data if needed, then build network and schedules."""
        if self.annealing_schedule is None:
            n_epochs = self.epochs
            if n_epochs is None and self._trainer is not None:
                n_epochs = self.trainer.max_epochs
            self.annealing_schedule = frange_cycle_linear(
                n_epochs or 1, self.start_beta, self.end_beta, self.n_cycle, self.ratio
            )
        if self.network is not None:
            return
        if isinstance(self.network_config, (dict, DictConfig)):
            if self.network_config.get("input_dim") is None and self.datamodule is not None:
                first_batch = next(iter(self.datamodule.train_dataloader()))
                data = first_batch["data"] if isinstance(first_batch, dict) else first_batch[0]
                self.network_config["input_dim"] = data.shape[-1]
        self.configure_model()

    def configure_model(self):
        """Instantiate network and loss from Hydra configs."""
        if self.network is not None:
            return
        torch.manual_seed(self.init_seed)

        if isinstance(self.network_config, (dict, DictConfig)):
            self.network = hydra_zen.instantiate(self.network_config)
        else:
            self.network = self.network_config

        if self.loss_config is None:
            self.loss_fn = GOKULoss()
        elif isinstance(self.loss_config, (dict, DictConfig)):
            self.loss_fn = hydra_zen.instantiate(self.loss_config)
        else:
            self.loss_fn = self.loss_config
        logger.info(
            f"Instantiated network={self.network.__class__.__name__}, "
            f"loss_fn={self.loss_fn.__class__.__name__}"
        )

    def beta_for_epoch(self, epoch: int) -> float:
        """KL weight of a 0-indexed epoch; the last value is held past the schedule."""
        if self.annealing_schedule is None or len(self.annealing_schedule) == 0:
            return float(self.end_beta)
        return float(self.annealing_schedule[min(epoch, len(self.annealing_schedule) - 1)])

    def forward(self, x: Tensor, variational: bool = False):
        assert self.network is not None, "Network not configured. Call setup() first."
        t = time_grid(x.shape[1], self.dt, device=x.device, dtype=x.dtype)
        return self.network(x, t, variational=variational)

    def encode(self, x: Tensor) -> LatentPair:
        """Inferred (z0_hat, theta_hat) from the posterior means, e.g. the pendulum length."""
        assert self.network is not None, "Network not configured. Call setup() first."
        was_training = self.network.training
        self.network.eval()
        with torch.no_grad():
            decoded = self.network.infer(x)
        self.network.train(was_training)
        return decoded

    def compute_loss(self, x: Tensor, variational: bool) -> dict[str, Tensor]:
        (x_hat, z_hat, decoded), mu, logvar = self(x, variational=variational)
        if hasattr(self.loss_fn, "components"):
            comps = self.loss_fn.components(outputs=x_hat, targets=x, mu=mu, logvar=logvar)
            loss = comps["recon"] + self.beta * comps["kl"]
        else:
            comps = {}
            loss = self.loss_fn(outputs=x_hat, targets=x, mu=mu, logvar=logvar, beta=self.beta)
        return {"loss": loss, **comps, "outputs": x_hat, "latent": z_hat}

    def _val_data(self) -> Optional[Tensor]:
        datamodule = self.datamodule
        if datamodule is None and self._trainer is not None:
            datamodule = getattr(self.trainer, "datamodule", None)
        return getattr(datamodule, "val_data", None)

    def validation_loss(self) -> Optional[float]:
        """Deterministic loss over the whole held-out set at full sequence length."""
        val_data = self._val_data()
        if val_data is None:
            return None
        x = val_data.to(self.device)
        with torch.no_grad():
            result = self.compute_loss(x, variational=False)
        return float(result["loss"])

    def on_train_epoch_start(self):
        epoch = self.current_epoch
        self.beta = self.beta_for_epoch(epoch)
        self.current_seq_len = seq_len_for_epoch(epoch, self.seq_len, self.curriculum)
        logger.info(f"Epoch {epoch + 1} .. (Sequence training length {self.current_seq_len})")

    def training_step(self, batch, batch_idx):
        opt = self.optimizers()
        x = batch["data"] if isinstance(batch, dict) else batch[0]
        x = time_loader(x, self.current_seq_len)

        result = self.compute_loss(x, variational=self.variational)
        loss = result["loss"]
        if not torch.isfinite(loss):
            logger.warning(f"Non-finite training loss at epoch {self.current_epoch + 1}, batch {batch_idx}")

        opt.zero_grad()
        self.manual_backward(loss)
        opt.step()

        batch_size = x.shape[0]
        self.log("train_loss", loss, prog_bar=True, on_step=False, on_epoch=True, batch_size=batch_size)
        for key in ("recon", "kl"):
            if key in result:
                self.log(f"train_{key}", result[key], on_step=False, on_epoch=True, batch_size=batch_size)
        self.log("beta", self.beta, on_step=False, on_epoch=True, batch_size=batch_size)
        self.log("seq_len", float(self.current_seq_len), on_step=False, on_epoch=True, batch_size=batch_size)

        if self.validate_every_step:
            val_loss = self.validation_loss()
            if val_loss is not None:
                self.last_val_loss = val_loss
                self.log("val_loss", val_loss, prog_bar=True, on_step=True, on_epoch=False, batch_size=batch_size)
        return {"loss": loss.detach()}

    def test_step(self, batch, batch_idx):
        x = batch["data"] if isinstance(batch, dict) else batch[0]
        result = self.compute_loss(x, variational=False)
        batch_size = x.shape[0]
        self.log("test_loss", result["loss"], prog_bar=True, on_epoch=True, batch_size=batch_size)
        for key in ("recon", "kl"):
            if key in result:
                self.log(f"test_{key}", result[key], on_epoch=True, batch_size=batch_size)
        return {"loss": result["loss"]}

    def configure_optimizers(self):
        """Instantiate optimizer."""
        if isinstance(self.optimizer_config, functools.partial):
            optimizer = self.optimizer_config(self.parameters())
        else:
            optimizer_partial = hydra_zen.instantiate(self.optimizer_config)
            optimizer = optimizer_partial(self.parameters())
        return optimizer
