from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Config:
    """Configuration schema for a GOKU training run.

    Flat record of every run option. The composed config is made read-only
    before use and handed to every component that needs it.
    """

    # Model / system selection
    system: str = "pendulum"
    """Registry name of the latent dynamical system (see ``latentdiffeq.systems.list_systems``)."""

    system_kwargs: Dict[str, Any] = field(default_factory=dict)
    """Keyword arguments for the system, e.g. ``{"k": 3}`` for van der Pol."""

    renderer: Optional[str] = None
    """Observation renderer; pendulum systems default to images, others to a random projection."""

    network: Dict[str, Any] = field(default_factory=dict)
    """Overrides for GOKUNetwork layer sizes and activations."""

    # Optimisation
    lr: float = 1e-3
    """AdamW learning rate."""

    weight_decay: float = 1e-3
    """AdamW weight decay."""

    batch_size: int = 64
    seq_len: int = 50
    """Training window length."""

    epochs: int = 1500
    seed: int = 333
    cuda: bool = True
    """Train on GPU when available."""

    dt: float = 0.05
    """Time between consecutive frames."""

    variational: bool = True
    """Sample the posterior during training; False decodes the posterior mean."""

    # KL annealing
    start_beta: float = 0.0
    end_beta: float = 1.0
    n_cycle: int = 4
    ratio: float = 0.9

    # Curriculum
    progressive_training: bool = False
    prog_training_duration: int = 200
    start_seq_len: int = 10

    # Visualisation
    vis_len: int = 60
    """Frames per validation plot; 0 disables plotting."""

    save_figure: bool = True

    # Data
    n_samples: int = 1000
    full_seq_len: int = 100
    """Time steps per generated sequence."""

    val_split: float = 0.1
    regenerate_data: bool = False

    ensemble_workers: Optional[int] = None
    """Thread cap for the per-sample solves; None sizes the pool to the batch."""

    trainer: Dict[str, Any] = field(default_factory=dict)
    """Extra arguments passed to the Lightning Trainer."""

    log_level: str = "info"
    """Logging level (one of: "debug", "info", "warning", "error", "critical")."""

    debug: bool = False
    """Enable debug mode (disables wandb and enables more verbose outputs)."""

    data_dir: str = "./data"
    """Directory for generated datasets."""

    output_dir: str = "./outputs"
    """Directory for the best weights and visualisations."""

    name: str = "default"
    """Experiment name."""

    project: str = "latentdiffeq"
    """Project name for logging and tracking."""
