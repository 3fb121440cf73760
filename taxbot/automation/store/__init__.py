"""Task and notification stores."""
from .interface import TaskStoreProtocol
from .memory import MemoryTaskStore

__all__ = ["MemoryTaskStore", "TaskStoreProtocol"]
