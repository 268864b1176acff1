# download-link-service/database.py
import functools
import logging
from typing import List, Optional

from beanie import init_beanie
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from config import Settings
from exceptions import StoreError
from models import Link, User
from schemas import LinkChanges

logger = logging.getLogger(__name__)


async def connect_to_mongo(settings: Settings):
    client = AsyncIOMotorClient(f"mongodb://{settings.mongo_host}:{settings.mongo_port}")
    database = client[settings.mongo_db]

    try:
        await database.command("ping")
        logger.info(
            "Connected to MongoDB: %s on %s:%s",
            settings.mongo_db,
            settings.mongo_host,
            settings.mongo_port,
        )
        await init_beanie(database=database, document_models=[Link, User])
        logger.info("Beanie ODM initialized.")
        return client, database
    except Exception:
        logger.exception("MongoDB connection failed")
        client.close()
        raise


async def close_mongo_connection(client: AsyncIOMotorClient):
    client.close()
    logger.info("Disconnected from MongoDB.")


def store_operation(action: str):
    """Turns driver failures into a StoreError with a client-safe message."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except PyMongoError as exc:
                logger.error("Failed to %s: %s", action, exc)
                raise StoreError(f"Failed to {action}") from exc

        return wrapper

    return decorator


# --- Links ---


@store_operation("create link")
async def create_link(link: Link) -> Link:
    await link.insert()
    return link


@store_operation("fetch link")
async def get_link(link_id: str) -> Optional[Link]:
    return await Link.get(link_id)


@store_operation("fetch links")
async def get_all_links() -> List[Link]:
    return await Link.find_all().sort(-Link.created_at).to_list()


@store_operation("update download count")
async def increment_download_count(link_id: str) -> Optional[int]:
    """
    Atomically bumps the counter and returns the post-increment value, or
    None when the link no longer exists.
    """
    document = await Link.get_motor_collection().find_one_and_update(
        {"_id": link_id},
        {"$inc": {"current_downloads": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if document is None:
        return None
    return document["current_downloads"]


@store_operation("deactivate link")
async def deactivate_link(link_id: str) -> bool:
    result = await Link.get_motor_collection().update_one(
        {"_id": link_id}, {"$set": {"is_active": False}}
    )
    return result.matched_count > 0


@store_operation("update link")
async def update_link(link_id: str, changes: LinkChanges) -> Optional[Link]:
    fields = changes.as_update()
    link = await Link.get(link_id)
    if link is None or not fields:
        return link
    await link.set(fields)
    return await Link.get(link_id)


@store_operation("delete link")
async def delete_link(link_id: str) -> bool:
    link = await Link.get(link_id)
    if link is None:
        return False
    await link.delete()
    return True


# --- Users ---


@store_operation("create user")
async def create_user(username: str, password_hash: str, role: str = "user") -> User:
    user = User(username=username, password=password_hash, role=role)
    await user.insert()
    return user


@store_operation("fetch user")
async def get_user_by_id(user_id: str) -> Optional[User]:
    if not ObjectId.is_valid(user_id):
        return None
    return await User.get(ObjectId(user_id))


@store_operation("fetch user")
async def get_user_by_username(username: str) -> Optional[User]:
    return await User.find_one(User.username == username)


@store_operation("fetch users")
async def get_all_users() -> List[User]:
    return await User.find_all().sort(User.created_at).to_list()


@store_operation("count users")
async def count_users() -> int:
    return await User.find_all().count()


@store_operation("update password")
async def update_user_password(user: User, password_hash: str) -> User:
    await user.set({User.password: password_hash})
    return user


@store_operation("update user")
async def update_username(user: User, username: str) -> User:
    await user.set({User.username: username})
    return user


@store_operation("delete user")
async def delete_user(user_id: str) -> bool:
    user = await get_user_by_id(user_id)
    if user is None:
        return False
    await user.delete()
    return True
