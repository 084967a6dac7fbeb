from typing import Any, Iterator, Protocol, runtime_checkable

import torch


@runtime_checkable
class HasForward(Protocol):
    def forward(self, x: torch.Tensor, **kwargs) -> Any: ...


@runtime_checkable
class DifferentiableModule(HasForward, Protocol):
    """Any learnable transform the GOKU pipeline can plug in as a layer."""

    def parameters(self, recurse: bool = True) -> Iterator[torch.nn.Parameter]: ...


@runtime_checkable
class Resettable(Protocol):
    """Module carrying hidden state between calls until ``reset`` is invoked."""

    def reset(self) -> None: ...
