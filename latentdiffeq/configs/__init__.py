from hydra.core.config_store import ConfigStore

from .config import Config

## Register configs immediately on import
cs = ConfigStore.instance()
cs.store(name="config", node=Config)

__all__ = [
    "Config",
]
