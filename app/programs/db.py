from threading import Lock
from typing import Optional

from pymongo import MongoClient
from pymongo.collection import Collection

from app.config import settings
from app.obs.logger import log_event

PROGRAMS_COLLECTION = "programs"

# One pooled client per process
_mongo_client: Optional[MongoClient] = None
_client_lock = Lock()


def get_mongo_client() -> MongoClient:
    global _mongo_client

    if _mongo_client is not None:
        return _mongo_client

    with _client_lock:
        if _mongo_client is not None:
            return _mongo_client
        # connects lazily; first query surfaces connection errors
        _mongo_client = MongoClient(
            settings.MONGODB_URI,
            serverSelectionTimeoutMS=5000,
            maxPoolSize=50,
            maxIdleTimeMS=30000,
        )
        log_event("mongo_client_created", db=settings.MONGODB_DB)
        return _mongo_client


def get_programs_collection(client: Optional[MongoClient] = None) -> Collection:
    client = client or get_mongo_client()
    return client[settings.MONGODB_DB][PROGRAMS_COLLECTION]


def close_mongo_client() -> None:
    global _mongo_client
    with _client_lock:
        if _mongo_client is not None:
            _mongo_client.close()
            _mongo_client = None
            log_event("mongo_client_closed")
