from torch import Tensor


def vector_mse(outputs: Tensor, targets: Tensor) -> Tensor:
    """Squared error averaged over batch and time, summed over features.

    Both inputs are (batch, time, features). NaN inputs give a NaN loss.
    """
    return ((outputs - targets) ** 2).mean(dim=(0, 1)).sum()
