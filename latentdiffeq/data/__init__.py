from .datamodule import LatentDiffEqDataModule, SequenceDataset
from .generators import LatentDataset, check_dataset, generate_dataset, load_dataset, load_or_generate, save_dataset
from .rendering import PendulumRenderer, ProjectionRenderer, Renderer, get_renderer
