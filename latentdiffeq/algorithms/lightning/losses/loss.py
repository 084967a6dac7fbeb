from typing import Protocol, runtime_checkable

from torch import Tensor


@runtime_checkable
class FunctionLoss(Protocol):
    """
    Protocol for loss functions in our framework.
    Named as such [YourFunction]Loss to avoid confusion
    with PyTorch's built-in loss functions.

    A Loss function should be callable or nn.Module-like, accepting:
      - outputs: model reconstructions, (batch, time, features)
      - targets: observed sequences of the same shape
      - additional keyword-only extras (posterior moments, KL weight)
    and returning a scalar torch.Tensor.
    """
    def __call__(
        self,
        outputs: Tensor,
        targets: Tensor,
        **extras: object,
    ) -> Tensor:
        ...  # Implement loss computation
