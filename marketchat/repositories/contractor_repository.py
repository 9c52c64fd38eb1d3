from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from marketchat.models.contractor import ContractorDocument
from marketchat.utils.ids import normalize_id, to_object_id


class ContractorRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("contractors")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("user_id", ASCENDING)], unique=True)

    async def create_contractor(
        self,
        user_id: str,
        business_name: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_picture: Optional[str] = None,
    ) -> str:
        doc = {
            "user_id": user_id,
            "business_name": business_name,
            "first_name": first_name,
            "last_name": last_name,
            "profile_picture": profile_picture,
        }
        result = await self._collection.insert_one(doc)
        return str(result.inserted_id)

    async def get_by_id(self, contractor_id: str) -> Optional[ContractorDocument]:
        oid = to_object_id(contractor_id)
        if oid is None:
            return None
        return normalize_id(await self._collection.find_one({"_id": oid}))

    async def get_by_account(self, user_id: str) -> Optional[ContractorDocument]:
        return normalize_id(await self._collection.find_one({"user_id": user_id}))
