"""Per-epoch schedules for KL annealing and curriculum (progressive) training."""

import numpy as np


def frange_cycle_linear(
    n_iter: int,
    start: float = 0.0,
    stop: float = 1.0,
    n_cycle: int = 4,
    ratio: float = 0.5,
) -> np.ndarray:
    """Cyclical linear annealing schedule.

    The ``n_iter`` entries are split into ``n_cycle`` periods. Within each period
    the weight ramps linearly from ``start`` to ``stop`` over the first
    ``ratio`` fraction of the period and is then held at ``stop``.

    Args:
        n_iter: Total number of entries (usually the number of epochs).
        start: Value at the beginning of every cycle.
        stop: Value held at the end of every cycle.
        n_cycle: Number of ramp-then-hold cycles.
        ratio: Fraction of each cycle spent increasing.

    Returns:
        Array of shape (n_iter,) with one weight per entry.

    Example:
        >>> beta = frange_cycle_linear(100, 0.0, 1.0, n_cycle=4, ratio=0.9)
        >>> # beta[0] == beta[25] == 0.0 and beta[24] == 1.0
    """
    if n_iter <= 0:
        return np.zeros(0, dtype=np.float32)
    if n_cycle <= 0:
        raise ValueError(f"n_cycle must be positive, got {n_cycle}")

    schedule = np.full(n_iter, stop, dtype=np.float64)
    period = n_iter / n_cycle
    step = (stop - start) / (period * ratio)

    for c in range(n_cycle):
        v, i = start, 0
        while v <= stop and int(i + c * period) < n_iter:
            schedule[int(i + c * period)] = v
            v += step
            i += 1

    return schedule.astype(np.float32)


def progressive_seq_lengths(
    start_seq_len: int,
    seq_len: int,
    duration: int,
) -> np.ndarray:
    """Integer sequence lengths growing linearly from start_seq_len to seq_len.

    Entry ``e`` is the training length for (0-indexed) epoch ``e``; after
    ``duration`` epochs the final ``seq_len`` is held.
    """
    if duration <= 0:
        return np.zeros(0, dtype=np.int64)
    if duration == 1:
        return np.array([seq_len], dtype=np.int64)
    lengths = np.linspace(start_seq_len, seq_len, duration)
    return np.round(lengths).astype(np.int64)


def seq_len_for_epoch(
    epoch: int,
    seq_len: int,
    curriculum: np.ndarray | None = None,
) -> int:
    """Training sequence length for a 0-indexed epoch."""
    if curriculum is not None and epoch < len(curriculum):
        return int(curriculum[epoch])
    return int(seq_len)
