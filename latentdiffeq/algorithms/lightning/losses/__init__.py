from .goku import GOKULoss, kl_divergence, vector_kl
from .loss import FunctionLoss
from .mse import vector_mse
