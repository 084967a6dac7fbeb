from .ensemble import EnsembleSolver, ParametrizedField, ParametrizedSDE, TrajectoryResult
from .goku_net import Decoder, Encoder, GOKUNetwork, LatentPair, reparameterize, sample
from .layers import ResidualBlock, StatefulRecurrent, residual_mlp
from .network import DifferentiableModule, HasForward, Resettable
