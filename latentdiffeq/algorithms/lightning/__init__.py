from .goku import GOKU

__all__ = ["GOKU"]
