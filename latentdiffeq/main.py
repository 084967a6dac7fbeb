"""
Command-line entry point for GOKU training runs.

Usage:
    python -m latentdiffeq.main system=pendulum epochs=100
    python -m latentdiffeq.main system=van_der_pol +system_kwargs.k=3 progressive_training=true
"""

from typing import Any, Dict

import hydra
from omegaconf import DictConfig

# Config registration happens automatically on import
import latentdiffeq.configs  # noqa: F401
from latentdiffeq.experiment import run_training


@hydra.main(config_path=None, config_name="config", version_base=None)
def main(cfg: DictConfig) -> Dict[str, Any]:
    return run_training(cfg)


if __name__ == "__main__":
    main()
