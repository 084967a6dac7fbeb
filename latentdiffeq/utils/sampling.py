"""Random time-window selection for sequence minibatches."""

from typing import Optional

import torch
from torch import Tensor


def rand_time(
    full_seq_len: int,
    seq_len: int,
    generator: Optional[torch.Generator] = None,
) -> slice:
    """Uniformly random contiguous window of ``seq_len`` steps inside ``full_seq_len``.

    Raises:
        ValueError: If the window does not fit in the available range.
    """
    if seq_len > full_seq_len:
        raise ValueError(
            f"Requested window of {seq_len} steps but only {full_seq_len} are available"
        )
    if seq_len <= 0:
        raise ValueError(f"seq_len must be positive, got {seq_len}")
    start = int(torch.randint(0, full_seq_len - seq_len + 1, (1,), generator=generator).item())
    return slice(start, start + seq_len)


def time_loader(
    x: Tensor,
    seq_len: int,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Crop a (batch, time, ...) tensor to a random window of ``seq_len`` steps.

    The same window is used for every sample of the batch.
    """
    window = rand_time(x.shape[1], seq_len, generator=generator)
    return x[:, window]


def time_grid(
    seq_len: int,
    dt: float,
    device: Optional[torch.device] = None,
    dtype: torch.dtype = torch.float32,
) -> Tensor:
    """Evaluation times ``0, dt, ..., (seq_len - 1) * dt``."""
    return torch.arange(seq_len, device=device, dtype=dtype) * dt


def normalize_to_unit_segment(x: Tensor) -> Tensor:
    """Min-max rescale ``x`` into [0, 1]. Constant inputs map to zeros."""
    x_min, x_max = x.min(), x.max()
    span = x_max - x_min
    if span == 0:
        return torch.zeros_like(x)
    return (x - x_min) / span
