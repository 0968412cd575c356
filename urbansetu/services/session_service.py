"""
Sessions and roles

Explicit session handling: every request resolves its bearer token into a
``UserSession`` through ``SessionManager``; nothing reads a global "current
user". Logout revokes the token id in Redis when it is available and in a
process-local set otherwise.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional, Set
from urllib.parse import quote

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError, PyMongoError

from urbansetu.core.exceptions import AuthenticationError, StorageError, ValidationError
from urbansetu.models.user_model import ProfileUpdate, RegisterRequest, User, UserInDB, UserType
from urbansetu.services.redis_service import RedisService
from urbansetu.utils.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    seconds_until_expiry,
    verify_password,
)

logger = logging.getLogger(__name__)

HOME_PAGES = {
    UserType.citizen: "/citizen",
    UserType.admin: "/admin",
}


def avatar_url(name: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote(name)}&background=48bb78&color=fff"


def home_for(user_type: UserType) -> str:
    return HOME_PAGES[UserType(user_type)]


class UserSession(BaseModel):
    token: str
    token_id: str
    user: User

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def user_type(self) -> UserType:
        return self.user.user_type


class UserStore(ABC):

    @abstractmethod
    async def insert(self, user: UserInDB) -> None: ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[UserInDB]: ...

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[UserInDB]: ...

    @abstractmethod
    async def update(self, user_id: str, changes: Dict) -> Optional[UserInDB]: ...


class MongoUserStore(UserStore):

    def __init__(self, db):
        self.collection = db["users"]

    @staticmethod
    def _from_doc(doc) -> Optional[UserInDB]:
        if not doc:
            return None
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        return UserInDB.model_validate(doc)

    async def insert(self, user: UserInDB) -> None:
        doc = user.model_dump(mode="json")
        doc["created_at"] = user.created_at
        doc["_id"] = doc.pop("id")
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise ValidationError("Email already registered", errors={"email": "An account with this email already exists"})
        except PyMongoError as e:
            raise StorageError(f"Failed to create user: {e}")

    async def find_by_email(self, email: str) -> Optional[UserInDB]:
        try:
            return self._from_doc(await self.collection.find_one({"email": email}))
        except PyMongoError as e:
            raise StorageError(f"Failed to read user: {e}")

    async def find_by_id(self, user_id: str) -> Optional[UserInDB]:
        try:
            return self._from_doc(await self.collection.find_one({"_id": user_id}))
        except PyMongoError as e:
            raise StorageError(f"Failed to read user: {e}")

    async def update(self, user_id: str, changes: Dict) -> Optional[UserInDB]:
        try:
            await self.collection.update_one({"_id": user_id}, {"$set": changes})
        except PyMongoError as e:
            raise StorageError(f"Failed to update user: {e}")
        return await self.find_by_id(user_id)


class InMemoryUserStore(UserStore):

    def __init__(self):
        self._users: Dict[str, UserInDB] = {}

    async def insert(self, user: UserInDB) -> None:
        if any(u.email == user.email for u in self._users.values()):
            raise ValidationError("Email already registered", errors={"email": "An account with this email already exists"})
        self._users[user.id] = user

    async def find_by_email(self, email: str) -> Optional[UserInDB]:
        return next((u for u in self._users.values() if u.email == email), None)

    async def find_by_id(self, user_id: str) -> Optional[UserInDB]:
        return self._users.get(user_id)

    async def update(self, user_id: str, changes: Dict) -> Optional[UserInDB]:
        user = self._users.get(user_id)
        if user is None:
            return None
        self._users[user_id] = user.model_copy(update=changes)
        return self._users[user_id]


class SessionManager:

    def __init__(self, store: UserStore, cache: Optional[RedisService] = None):
        self.store = store
        self.cache = cache
        self._revoked: Set[str] = set()

    def _issue(self, user: UserInDB) -> UserSession:
        token = create_access_token(user.id, user.user_type.value)
        claims = decode_access_token(token)
        return UserSession(token=token, token_id=claims["jti"], user=User.model_validate(user.model_dump()))

    async def register(self, data: RegisterRequest) -> UserSession:
        email = data.email.lower()
        if await self.store.find_by_email(email):
            raise ValidationError("Email already registered", errors={"email": "An account with this email already exists"})

        name = (data.name or "").strip() or email.split("@")[0]
        user = UserInDB(
            email=email,
            name=name,
            user_type=data.user_type,
            phone=data.phone,
            address=data.address,
            department=data.department,
            avatar=avatar_url(name),
            password_hash=get_password_hash(data.password),
            created_at=datetime.utcnow(),
        )
        await self.store.insert(user)
        logger.info(f"👤 Registered {user.user_type.value} {email} ({user.id})")
        return self._issue(user)

    async def login(self, email: str, password: str, user_type: UserType) -> UserSession:
        user = await self.store.find_by_email(email.lower())
        if user is None or not verify_password(password, user.password_hash):
            logger.warning(f"🔒 Failed login for {email}")
            raise AuthenticationError("Incorrect email or password")
        if user.user_type != UserType(user_type):
            logger.warning(f"🔒 {email} tried to log in as {UserType(user_type).value} but is {user.user_type.value}")
            raise AuthenticationError(f"This account is not registered as {UserType(user_type).value}")
        logger.info(f"🔓 {user.user_type.value} {user.email} logged in")
        return self._issue(user)

    async def logout(self, token: str) -> None:
        claims = decode_access_token(token)
        jti = claims["jti"]
        self._revoked.add(jti)
        if self.cache is not None:
            await self.cache.revoke_token(jti, seconds_until_expiry(claims))
        logger.info(f"👋 Session {jti[:8]} for user {claims['sub']} revoked")

    async def _is_revoked(self, jti: str) -> bool:
        if jti in self._revoked:
            return True
        if self.cache is not None:
            return await self.cache.is_token_revoked(jti)
        return False

    async def resolve(self, token: str) -> UserSession:
        claims = decode_access_token(token)
        if await self._is_revoked(claims["jti"]):
            raise AuthenticationError("Session has been logged out")
        user = await self.store.find_by_id(claims["sub"])
        if user is None:
            raise AuthenticationError("User no longer exists")
        return UserSession(token=token, token_id=claims["jti"], user=User.model_validate(user.model_dump()))

    async def update_profile(self, user_id: str, updates: ProfileUpdate) -> User:
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        if "name" in changes:
            changes["name"] = changes["name"].strip()
            if not changes["name"]:
                raise ValidationError("Name cannot be empty", errors={"name": "Name cannot be empty"})
            changes["avatar"] = avatar_url(changes["name"])
        if not changes:
            user = await self.store.find_by_id(user_id)
        else:
            user = await self.store.update(user_id, changes)
        if user is None:
            raise AuthenticationError("User no longer exists")
        logger.info(f"✏️ Profile updated for {user_id}: {sorted(changes)}")
        return User.model_validate(user.model_dump())
