import hashlib
import json
import logging
import os
from typing import Optional

import torch
from lightning import LightningDataModule
from torch.utils.data import DataLoader, Dataset

from latentdiffeq.systems import DynamicalSystem, get_system

from .generators import LatentDataset, load_or_generate
from .rendering import default_renderer_name, get_renderer

logger = logging.getLogger(__name__)


def settings_hash(system_kwargs: Optional[dict], renderer_kwargs: Optional[dict], random_state: int) -> str:
    """Short digest of the generation settings that are not spelled out in the file name."""
    hash_input = json.dumps(
        {"system": dict(system_kwargs or {}), "renderer": dict(renderer_kwargs or {}), "seed": random_state},
        sort_keys=True,
        default=str,
    ).encode("utf-8")
    return hashlib.md5(hash_input).hexdigest()[:8]


class SequenceDataset(Dataset):
    """Observation sequences with their ground-truth latents and parameters."""

    def __init__(self, dataset: LatentDataset):
        self.observations = dataset.observations
        self.latent = dataset.latent
        self.params = dataset.params

    def __len__(self):
        return self.observations.shape[0]

    def __getitem__(self, idx):
        return {
            "data": self.observations[idx],
            "latent": self.latent[idx],
            "params": self.params[idx],
        }


class LatentDiffEqDataModule(LightningDataModule):
    """
    PyTorch Lightning DataModule for sequences generated by a latent dynamical system.
    """

    def __init__(
        self,
        system: str | DynamicalSystem = "pendulum",
        system_kwargs: Optional[dict] = None,
        renderer: Optional[str] = None,
        renderer_kwargs: Optional[dict] = None,
        n_samples: int = 1000,
        full_seq_len: int = 100,
        dt: float = 0.05,
        batch_size: int = 64,
        val_split: float = 0.1,
        num_workers: int = 0,
        data_dir: str = "./data",
        file_name: Optional[str] = None,
        random_state: int = 333,
        regenerate: bool = False,
    ):
        """
        Parameters
        ----------
        system : str or DynamicalSystem, default="pendulum"
            Registry name or instance of the system generating the latent trajectories.

        system_kwargs : dict, optional
            Keyword arguments for the system when ``system`` is a name.

        renderer : str, optional
            Observation renderer name. Pendulum systems default to "pendulum"
            images, others to "projection".

        renderer_kwargs : dict, optional
            Keyword arguments for the renderer.

        n_samples : int, default=1000
            Number of generated sequences.

        full_seq_len : int, default=100
            Number of time steps per generated sequence.

        dt : float, default=0.05
            Time between consecutive frames.

        batch_size : int, default=64
            Training batch size. Incomplete final batches are dropped.

        val_split : float, default=0.1
            Fraction of sequences, taken from the end, held out for validation.

        num_workers : int, default=0
            Number of subprocesses for data loading.

        data_dir : str, default="./data"
            Directory holding the generated dataset file.

        file_name : str, optional
            Dataset file name; derived from the generation settings by default,
            with a short hash of ``system_kwargs``, ``renderer_kwargs`` and
            ``random_state``.

        random_state : int, default=333
            Seed for initial conditions, parameters and noise.

        regenerate : bool, default=False
            Ignore any dataset file on disk and generate a new one.
        """
        super().__init__()
        system_name = system if isinstance(system, str) else type(system).__name__.lower()
        self.system = get_system(system, **dict(system_kwargs or {}))
        self.renderer_name = renderer or default_renderer_name(system_name)
        self.renderer = get_renderer(self.renderer_name, **dict(renderer_kwargs or {}))

        self.n_samples = n_samples
        self.full_seq_len = full_seq_len
        self.dt = dt
        self.batch_size = batch_size
        self.val_split = val_split
        self.num_workers = num_workers
        self.data_dir = data_dir
        self.file_name = file_name or (
            f"{system_name}_{self.renderer_name}_{n_samples}x{full_seq_len}_dt{dt}_"
            f"{settings_hash(system_kwargs, renderer_kwargs, random_state)}.npz"
        )
        self.random_state = random_state
        self.regenerate = regenerate

        self.dataset: Optional[LatentDataset] = None
        self.train_dataset: Optional[SequenceDataset] = None
        self.val_dataset: Optional[SequenceDataset] = None

    @property
    def path(self) -> str:
        return os.path.join(self.data_dir, self.file_name)

    def _load(self, regenerate: bool = False) -> LatentDataset:
        generator = torch.Generator().manual_seed(self.random_state)
        return load_or_generate(
            self.path,
            self.system,
            self.n_samples,
            self.full_seq_len,
            self.dt,
            self.renderer,
            generator=generator,
            regenerate=regenerate,
        )

    def prepare_data(self) -> None:
        """Generate the dataset file if it is missing or unreadable."""
        self.dataset = self._load(regenerate=self.regenerate)

    def setup(self, stage: str = None):
        if self.train_dataset is not None:
            return
        if self.dataset is None:
            self.dataset = self._load(regenerate=self.regenerate)

        n = self.dataset.observations.shape[0]
        n_train = int(round(n * (1.0 - self.val_split)))
        if n_train <= 0 or n_train >= n:
            raise ValueError(f"val_split={self.val_split} leaves no train or validation samples out of {n}")

        # ordered split: the last sequences are held out
        train = LatentDataset(*(a[:n_train] for a in self.dataset))
        val = LatentDataset(*(a[n_train:] for a in self.dataset))
        self.train_dataset = SequenceDataset(train)
        self.val_dataset = SequenceDataset(val)
        logger.info(f"Train sequences: {len(self.train_dataset)}, validation sequences: {len(self.val_dataset)}")

    @property
    def input_dim(self) -> int:
        return int(self.dataset.observations.shape[-1])

    @property
    def val_data(self) -> torch.Tensor:
        return self.val_dataset.observations

    @property
    def val_latent(self) -> torch.Tensor:
        return self.val_dataset.latent

    @property
    def val_params(self) -> torch.Tensor:
        return self.val_dataset.params

    def train_dataloader(self) -> DataLoader:
        return DataLoader(
            self.train_dataset,
            batch_size=self.batch_size,
            shuffle=True,
            drop_last=True,
            num_workers=self.num_workers,
        )

    def test_dataloader(self) -> DataLoader:
        return DataLoader(
            self.val_dataset,
            batch_size=self.batch_size,
            shuffle=False,
            num_workers=self.num_workers,
        )
