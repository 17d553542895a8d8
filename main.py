import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

import admin
import auth
import cart
import chats
import complaints
import database
import moderation
import products
import shops
import storage
import users
from config import BLOCK_SWEEP_INTERVAL_SECONDS, CORS_ORIGINS, LOG_LEVEL, OWNER_PASSWORD, OWNER_USERNAME, PORT
from roles import Role
from schemas import User as UserSchema

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# App and CORS
app = FastAPI(title="Marketplace API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(shops.router)
app.include_router(products.router)
app.include_router(complaints.router)
app.include_router(complaints.ws_router)
app.include_router(chats.router)
app.include_router(chats.ws_router)
app.include_router(cart.router)
app.include_router(admin.router)

_sweep_task: Optional[asyncio.Task] = None


def ensure_owner_account() -> None:
    if not OWNER_USERNAME or not OWNER_PASSWORD:
        return
    if storage.get_user_by_username(OWNER_USERNAME):
        return
    storage.create_user(UserSchema(
        username=OWNER_USERNAME,
        password_hash=auth.hash_password(OWNER_PASSWORD),
        display_name=OWNER_USERNAME,
        role=Role.OWNER,
        is_premium=True,
        is_verified=True,
    ))
    logger.info("Created platform owner account %s", OWNER_USERNAME)


async def sweep_blocks_forever(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(moderation.sweep_expired_blocks)
        except Exception:
            logger.exception("Expired block sweep failed")


@app.on_event("startup")
async def startup():
    global _sweep_task
    if database.db is None:
        logger.warning("DATABASE_URL is not set; running without a database")
        return
    database.ensure_indexes()
    ensure_owner_account()
    if BLOCK_SWEEP_INTERVAL_SECONDS > 0:
        _sweep_task = asyncio.create_task(sweep_blocks_forever(BLOCK_SWEEP_INTERVAL_SECONDS))


@app.on_event("shutdown")
async def shutdown():
    global _sweep_task
    if _sweep_task is not None:
        _sweep_task.cancel()
        _sweep_task = None


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Marketplace API running"}


@app.get("/test")
def test_database():
    db = database.db
    try:
        collections = db.list_collection_names() if db is not None else []
        return {"backend": "ok", "database": "ok" if db is not None else "missing", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {e}"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
