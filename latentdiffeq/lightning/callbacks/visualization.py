"""Plots of validation reconstructions during training."""

import logging
import math
import os
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import torch
import wandb
from lightning.pytorch import Callback

from latentdiffeq.utils.sampling import rand_time, time_grid
from latentdiffeq.utils.utils import check_or_make_dirs

logger = logging.getLogger(__name__)


def _fmt(values, limit: int = 4) -> str:
    values = np.asarray(values).ravel()
    shown = ", ".join(f"{v:.3f}" for v in values[:limit])
    return f"[{shown}, ...]" if values.size > limit else f"[{shown}]"


class VisualizeReconstruction(Callback):
    """After every epoch decode one random validation window and plot it.

    The figure shows the first latent coordinate inferred by the model against
    the ground truth and, for square frames, a mosaic of observed and
    reconstructed frames. Saved to ``<output_dir>/visualization/fig_<epoch>.png``
    or shown interactively when ``save_figure`` is off.

    Args:
        output_dir: Run output directory.
        vis_len: Window length in frames (clipped to the available length).
        save_figure: Save to disk instead of showing.
        n_frames: Frames per mosaic row.
        seed: Seed for the sample and window choice.
    """

    def __init__(
        self,
        output_dir: str = "./outputs",
        vis_len: int = 60,
        save_figure: bool = True,
        n_frames: int = 10,
        seed: Optional[int] = None,
        log_key: str = "reconstruction",
    ):
        super().__init__()
        self.output_dir = output_dir
        self.vis_len = vis_len
        self.save_figure = save_figure
        self.n_frames = n_frames
        self.log_key = log_key
        self.generator = torch.Generator()
        if seed is not None:
            self.generator.manual_seed(seed)

    @property
    def save_dir(self) -> str:
        return os.path.join(self.output_dir, "visualization")

    def on_train_epoch_end(self, trainer, pl_module):
        datamodule = pl_module.datamodule
        if datamodule is None:
            datamodule = getattr(trainer, "datamodule", None)
        if datamodule is None or getattr(datamodule, "val_dataset", None) is None:
            return
        self.visualize(pl_module, datamodule, epoch=trainer.current_epoch)

    def visualize(self, pl_module, datamodule, epoch: int) -> Optional[str]:
        """Decode a random validation window and plot it; returns the saved path."""
        val_data, val_latent = datamodule.val_data, datamodule.val_latent
        idx = int(torch.randint(0, val_data.shape[0], (1,), generator=self.generator).item())
        window = rand_time(val_data.shape[1], min(self.vis_len, val_data.shape[1]), generator=self.generator)

        x = val_data[idx : idx + 1, window].to(pl_module.device)
        t = time_grid(x.shape[1], pl_module.dt, device=x.device, dtype=x.dtype)
        was_training = pl_module.network.training
        pl_module.network.eval()
        with torch.no_grad():
            (x_hat, z_hat, _), _, _ = pl_module.network(x, t, variational=False)
        pl_module.network.train(was_training)

        theta_hat = pl_module.encode(x).theta[0].cpu().numpy()
        theta_true = datamodule.val_params[idx].numpy()
        logger.info(f"Validation sample {idx}: true params {_fmt(theta_true)}, inferred params {_fmt(theta_hat)}")

        system = pl_module.network.system
        z_true = system.output_transform(val_latent[idx : idx + 1, window])[0, :, 0].numpy()
        z_pred = z_hat[0, :, 0].cpu().numpy()
        fig = self.plot(
            t.cpu().numpy(),
            z_true,
            z_pred,
            x[0].cpu().numpy(),
            x_hat[0].cpu().numpy(),
            epoch,
            theta_true=theta_true,
            theta_hat=theta_hat,
        )

        if not self.save_figure:
            plt.show()
            plt.close(fig)
            return None
        check_or_make_dirs(self.save_dir)
        path = os.path.join(self.save_dir, f"fig_{epoch + 1}.png")
        fig.savefig(path, bbox_inches="tight", dpi=100)
        plt.close(fig)
        if wandb.run is not None:
            wandb.log({self.log_key: wandb.Image(path)})
        return path

    def plot(self, t, z_true, z_pred, frames, frames_hat, epoch: int, theta_true=None, theta_hat=None):
        """Latent comparison and frame mosaics. The title reports true and
        inferred parameters when given, e.g. the pendulum length."""
        side = math.isqrt(frames.shape[-1])
        show_frames = side * side == frames.shape[-1]
        n_rows = 3 if show_frames else 1
        fig, axes = plt.subplots(n_rows, 1, figsize=(10, 2.5 * n_rows), squeeze=False)

        ax = axes[0, 0]
        ax.plot(t, z_true, label="ground truth")
        ax.plot(t, z_pred, "--", label="inferred")
        ax.set_xlabel("t")
        ax.set_ylabel("latent[0]")
        title = f"Epoch {epoch + 1}"
        if theta_true is not None and theta_hat is not None:
            title += f" | true params {_fmt(theta_true)} | inferred params {_fmt(theta_hat)}"
        ax.set_title(title)
        ax.legend()

        if show_frames:
            step = max(1, frames.shape[0] // self.n_frames)
            for row, (name, seq) in enumerate((("observed", frames), ("reconstructed", frames_hat)), start=1):
                mosaic = np.concatenate([f.reshape(side, side) for f in seq[::step][: self.n_frames]], axis=1)
                axes[row, 0].imshow(mosaic, cmap="gray", vmin=0.0, vmax=1.0)
                axes[row, 0].set_ylabel(name)
                axes[row, 0].set_xticks([])
                axes[row, 0].set_yticks([])
        fig.tight_layout()
        return fig
