from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from marketchat.models.user import UserDocument
from marketchat.utils.ids import normalize_id, to_object_id


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def create_user(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role: str = "user",
        profile_picture: Optional[str] = None,
    ) -> str:

        doc = {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "role": role,
            "profile_picture": profile_picture,
        }
        result = await self._collection.insert_one(doc)
        return str(result.inserted_id)

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:

        oid = to_object_id(user_id)
        if oid is None:
            return None
        user = await self._collection.find_one({"_id": oid})
        return normalize_id(user)
