"""Device resolution utilities.

Device placement is an explicit configuration value: it is resolved once at
run start and handed to the Trainer, never read from ambient state inside the
model code.
"""
import logging

import torch

logger = logging.getLogger(__name__)


def resolve_device(device: str | None) -> str:
    """Resolve device string to concrete device.

    Args:
        device: None, "cpu", "cuda", or "auto".

    Returns:
        "cpu" or "cuda".
    """
    if device is None or device == "auto":
        return "cuda" if torch.cuda.is_available() else "cpu"
    if device == "cuda" and not torch.cuda.is_available():
        logger.warning("CUDA requested but not available; falling back to CPU.")
        return "cpu"
    return device


def resolve_accelerator(cuda: bool) -> str:
    """Lightning accelerator name for the ``cuda`` on/off toggle."""
    device = resolve_device("cuda" if cuda else "cpu")
    if device == "cuda":
        logger.info("Training on GPU")
        return "gpu"
    logger.info("Training on CPU")
    return "cpu"
