"""Best-validation weight snapshots."""

import logging
import os
from typing import Any, Dict, Optional

import torch
import torch.nn as nn
from lightning.pytorch import Callback

from latentdiffeq.utils.utils import check_or_make_dirs

logger = logging.getLogger(__name__)


class BestWeightsCheckpoint(Callback):
    """Save the network's ``state_dict`` whenever the validation loss improves.

    Reads ``pl_module.last_val_loss`` after every training batch. Only a loss
    strictly below the best seen so far is saved, so ties keep the earlier
    snapshot and NaN never replaces a finite best.

    Args:
        output_dir: Directory for the weights file.
        filename: Name of the weights file.
    """

    def __init__(self, output_dir: str = "./outputs", filename: str = "best_model_weights.pt"):
        super().__init__()
        self.output_dir = output_dir
        self.filename = filename
        self.best_val_loss = float("inf")
        self.best_epoch: Optional[int] = None

    @property
    def path(self) -> str:
        return os.path.join(self.output_dir, self.filename)

    def update(self, network: nn.Module, val_loss: float, epoch: Optional[int] = None) -> bool:
        """Save ``network`` if ``val_loss`` beats the best; returns whether it did."""
        if not val_loss < self.best_val_loss:
            return False
        check_or_make_dirs(self.output_dir)
        torch.save(network.state_dict(), self.path)
        logger.debug(f"Validation loss improved {self.best_val_loss:.6f} -> {val_loss:.6f}; saved {self.path}")
        self.best_val_loss = val_loss
        self.best_epoch = epoch
        return True

    def on_train_batch_end(self, trainer, pl_module, outputs, batch, batch_idx):
        val_loss = getattr(pl_module, "last_val_loss", None)
        if val_loss is None or pl_module.network is None:
            return
        self.update(pl_module.network, val_loss, epoch=trainer.current_epoch)

    def on_train_end(self, trainer, pl_module):
        if self.best_epoch is not None:
            logger.info(
                f"Best validation loss {self.best_val_loss:.6f} at epoch {self.best_epoch + 1}; "
                f"weights in {self.path}"
            )

    def state_dict(self) -> Dict[str, Any]:
        return {"best_val_loss": self.best_val_loss, "best_epoch": self.best_epoch}

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        self.best_val_loss = state_dict["best_val_loss"]
        self.best_epoch = state_dict["best_epoch"]


def load_weights(network: nn.Module, path: str, map_location: str | torch.device = "cpu") -> nn.Module:
    """Restore weights written by :class:`BestWeightsCheckpoint` into ``network``."""
    state = torch.load(path, map_location=map_location, weights_only=True)
    network.load_state_dict(state)
    logger.info(f"Loaded weights from {path}")
    return network
