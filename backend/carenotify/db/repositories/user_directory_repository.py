from carenotify.core.database_context import Collection, Database
from carenotify.db.collections import CollectionNames
from carenotify.domain.enums.user import UserRole
from carenotify.domain.preferences import RecipientContact


class UserDirectoryRepository:
    """Read-only view of the users collection owned by the account service."""

    def __init__(self, database: Database):
        self.db: Database = database
        self.users_collection: Collection = self.db.get_collection(CollectionNames.USERS)

    async def get_contact(self, user_id: str) -> RecipientContact | None:
        doc = await self.users_collection.find_one({"user_id": user_id}, {"user_id": 1, "email": 1, "phone": 1})
        if not doc:
            return None
        return RecipientContact(user_id=doc["user_id"], email=doc.get("email"), phone=doc.get("phone"))

    async def users_with_role(self, role: UserRole) -> list[str]:
        cursor = self.users_collection.find({"role": str(role), "is_active": True}, {"user_id": 1})
        return [doc["user_id"] async for doc in cursor if doc.get("user_id")]
