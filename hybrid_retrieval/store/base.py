from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..index.schema import Chunk


class ChunkStore(ABC):
    """
    Read-only view of persisted chunks. Implementations raise
    StoreUnavailableError when the backing store cannot be read.
    """

    @abstractmethod
    def find_eligible_chunks(self, project_id: str, owner_id: Optional[str] = None) -> List[Chunk]:
        """Chunks of ``project_id``; with ``owner_id``, only that owner's or unowned ones."""
        ...

    @abstractmethod
    def project_exists(self, project_id: str, owner_id: Optional[str] = None) -> bool:
        ...
