from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class ChainReader(Provider):
    """Read-only view of Sui state used by the scanner and oracle resolver"""

    @abstractmethod
    async def query_events(
        self,
        event_type: str,
        cursor: Optional[Dict[str, Any]] = None,
        limit: int = 50,
        descending: bool = True,
    ) -> Dict[str, Any]:
        """One page of events: {"data": [...], "nextCursor": ..., "hasNextPage": bool}"""
        pass

    @abstractmethod
    async def multi_get_objects(
        self,
        object_ids: List[str],
        show_content: bool = True,
        show_owner: bool = False,
    ) -> List[Dict[str, Any]]:
        """Object responses in request order"""
        pass

    @abstractmethod
    async def get_dynamic_field_object(
        self,
        parent_id: str,
        name_type: str,
        name_value: Any,
    ) -> Dict[str, Any]:
        """Dynamic field object response for a table entry"""
        pass
