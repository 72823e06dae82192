"""Read-only base repository over Supabase tables"""
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from pydantic import BaseModel
from supabase import Client  # type: ignore

T = TypeVar('T', bound=BaseModel)


class ReadOnlyRepository(Generic[T]):
    """
    Base repository for tables this service consumes but never writes.
    Hides Supabase implementation details from the rest of the application.
    """

    def __init__(self, client: Client, table_name: str, model_class: Type[T]):
        self._client = client
        self._table_name = table_name
        self._model_class = model_class

    def _to_model(self, data: Dict[str, Any]) -> T:
        """Convert database dict to domain model"""
        return self._model_class(**data)

    async def find_by_id(self, id: str) -> Optional[T]:
        """Find a single record by ID"""
        response = self._client.table(self._table_name).select("*").eq("id", id).limit(1).execute()

        if not response.data:
            return None

        return self._to_model(response.data[0])
