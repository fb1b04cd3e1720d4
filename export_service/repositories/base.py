"""Base repository interface."""

from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar

T = TypeVar('T')


class Repository(ABC, Generic[T]):
    """
    Base repository interface.

    Job state is process-local, so the only implementation keeps entities in
    memory. Services depend on this interface so tests can swap in mocks.
    """

    @abstractmethod
    def get(self, entity_id: str) -> Optional[T]:
        """Get entity by id, None if unknown."""

    @abstractmethod
    def list(self) -> List[T]:
        """All entities, oldest first."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Insert or replace an entity."""

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Delete by id. Returns True if something was removed."""

    def exists(self, entity_id: str) -> bool:
        return self.get(entity_id) is not None
