from .config import CHAIN_SEED, EVVConfig, load_config
from .keyed_lock import KeyedLock
from .visit_store import InMemoryVisitStore

__all__ = ["CHAIN_SEED", "EVVConfig", "load_config", "KeyedLock", "InMemoryVisitStore"]
