"""FanZone - Data repositories."""
from repositories.memory import DataRepository, MemoryRepository

__all__ = ["DataRepository", "MemoryRepository"]
