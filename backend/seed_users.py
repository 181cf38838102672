"""
Recreate the PathFlow demo accounts.

Usage: python seed_users.py
"""

import asyncio
import logging
import sys

from auth import hash_password
from config import settings
from store import PathStore, open_pool

logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger("seed_users")

DEMO_USERS = [
    {"username": "demo", "email": "demo@pathflow.com", "password": "demo123", "name": "Demo User"},
    {"username": "test", "email": "test@pathflow.com", "password": "test123", "name": "Test User"},
    {"username": "pathflow", "email": "pathflow@example.com", "password": "pathflow123", "name": "PathFlow User"},
]


async def seed_users(store: PathStore) -> list[dict]:
    """Remove any existing demo accounts and create them afresh."""
    for data in DEMO_USERS:
        for login in (data["username"], data["email"]):
            existing = await store.find_user_by_login(login)
            if existing is not None:
                await store.delete_user(existing["id"])
                logger.info(f"Removed existing user: {existing['username']}")

    created = []
    for data in DEMO_USERS:
        user = await store.create_user(
            username=data["username"],
            email=data["email"],
            name=data["name"],
            password_hash=hash_password(data["password"]),
        )
        logger.info(f"Created user: {user['username']} ({user['email']})")
        created.append(user)
    return created


async def main() -> int:
    try:
        pool = await open_pool(settings.database_url)
    except Exception as e:
        logger.error(f"Could not connect to the database: {e}")
        return 1

    try:
        store = PathStore(pool)
        await store.setup()
        await seed_users(store)
    finally:
        await pool.close()

    print("\nDemo users created. Log in with:")
    for data in DEMO_USERS:
        print(f"   Username: {data['username']} | Password: {data['password']}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
