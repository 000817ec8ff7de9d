import logging

from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import CollectionInvalid

from event_media.persistence import mongo_client

logger = logging.getLogger(__name__)


class BaseMongo:
    """Thin async wrapper over one collection.

    Documents are addressed by ``_id`` only; nothing in the ingest path scans.
    """

    def __init__(self, collection: str, database: AsyncDatabase = None):
        self.collection = collection
        self.database = database

    @property
    def _collection(self):
        database = self.database if self.database is not None else mongo_client.db
        return database[self.collection]

    async def find_one_by_id(self, obj_id: str, session=None):
        return await self._collection.find_one({"_id": obj_id}, session=session)

    async def replace_one_by_id(self, obj_id: str, document: dict, session=None):
        return await self._collection.replace_one(
            {"_id": obj_id}, document, upsert=True, session=session
        )

    async def delete_one_by_id(self, obj_id: str, session=None):
        return await self._collection.delete_one({"_id": obj_id}, session=session)


async def initialize_db(database: AsyncDatabase, collection_names: list[str]) -> None:
    logger.info(f"Initializing database: {database.name}")
    existing = await database.list_collection_names()
    for name in collection_names:
        if name not in existing:
            try:
                await database.create_collection(name)
            except CollectionInvalid:
                logger.debug(f"Collection '{name}' already exists (race condition).")
                continue
            logger.info(f"Created collection '{name}'")
