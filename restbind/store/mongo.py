"""
MongoDB Model handle backed by motor (AsyncIOMotorCollection).

Example:
    from motor.motor_asyncio import AsyncIOMotorClient

    db = AsyncIOMotorClient("mongodb://localhost:27017")["shop"]
    users = MotorModel(db.users, schema=User)
    items = MotorModel(db.items, schema=Item, refs={"owner": users})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bson import ObjectId

from .base import BaseEntity, BaseQuery, StoreModel

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
    from pydantic import BaseModel as Schema

logger = logging.getLogger(__name__)


class MotorEntity(BaseEntity):
    """Entity persisted in a MongoDB collection."""

    _model: "MotorModel"

    async def _insert(self, document: dict[str, Any]) -> dict[str, Any]:
        result = await self._model.collection.insert_one(document)
        document[self._model.id_field] = result.inserted_id
        return document

    async def _replace(self, document: dict[str, Any]) -> None:
        await self._model.collection.replace_one(
            {self._model.id_field: self.id},
            document,
        )

    async def _delete(self) -> None:
        await self._model.collection.delete_one({self._model.id_field: self.id})


class MotorQuery(BaseQuery["MotorModel"]):
    """Query translated into a single motor cursor."""

    async def _fetch(self) -> list[dict[str, Any]]:
        collection = self.model.collection
        cursor = collection.find(self.predicate, self.projection)
        if self.sort_spec:
            cursor = cursor.sort(self.sort_spec)
        if self.skip_count:
            cursor = cursor.skip(self.skip_count)
        if self.limit_count is not None:
            cursor = cursor.limit(self.limit_count)

        documents = await cursor.to_list(length=None)
        logger.debug(
            f"MongoDB {self.model.name}.find returned {len(documents)} documents "
            f"(skip={self.skip_count}, limit={self.limit_count})"
        )
        return documents


class MotorModel(StoreModel):
    """
    Model handle over an AsyncIOMotorCollection.

    String ids that are valid ObjectIds are converted before querying,
    so ``/items/507f1f77bcf86cd799439011`` matches the stored ObjectId.
    """

    def __init__(
        self,
        collection: "AsyncIOMotorCollection",
        *,
        schema: type["Schema"] | None = None,
        id_field: str = "_id",
        refs: dict[str, StoreModel] | None = None,
        name: str | None = None,
    ):
        super().__init__(
            name or collection.name,
            schema=schema,
            id_field=id_field,
            refs=refs,
        )
        self.collection = collection

    @classmethod
    def from_database(
        cls,
        database: "AsyncIOMotorDatabase",
        collection_name: str,
        **kwargs: Any,
    ) -> "MotorModel":
        """Create a handle for ``database[collection_name]``."""
        return cls(database[collection_name], **kwargs)

    def coerce_id(self, raw_id: Any) -> Any:
        if isinstance(raw_id, str) and ObjectId.is_valid(raw_id):
            return ObjectId(raw_id)
        return raw_id

    def _query(self, predicate: dict[str, Any], *, single: bool) -> MotorQuery:
        return MotorQuery(self, predicate, single=single)

    def new(self, data: dict[str, Any] | None = None) -> MotorEntity:
        return MotorEntity(self, data or {}, is_new=True)

    def wrap(self, document: dict[str, Any]) -> MotorEntity:
        return MotorEntity(self, document, is_new=False)


__all__ = ["MotorEntity", "MotorQuery", "MotorModel"]
