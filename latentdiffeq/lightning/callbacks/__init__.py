"""Lightning callbacks for best-weight checkpointing and reconstruction plots."""
from latentdiffeq.lightning.callbacks.checkpoint import BestWeightsCheckpoint, load_weights
from latentdiffeq.lightning.callbacks.visualization import VisualizeReconstruction

__all__ = ["BestWeightsCheckpoint", "VisualizeReconstruction", "load_weights"]
