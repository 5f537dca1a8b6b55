import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING

from app.utils.config import get_settings
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

_db_settings = get_settings().database

logger.info(f"Initializing MongoDB connection to database: {_db_settings.db_name}")

# Initialize client (motor connects lazily on first operation)
try:
    client = motor.motor_asyncio.AsyncIOMotorClient(_db_settings.mongo_details)
    db = client[_db_settings.db_name]
    logger.info("MongoDB client initialized successfully")
except Exception as e:
    logger.error(f"Failed to initialize MongoDB client: {e}")
    raise

# Collections
documents_coll = db["documents"]
profiles_coll = db["profiles"]
requirements_coll = db["requirements"]
match_scores_coll = db["match_scores"]
skill_gaps_coll = db["skill_gaps"]
job_progress_coll = db["job_progress"]


async def _ensure_index(coll, keys, name: str, **kwargs):
    try:
        await coll.create_index(keys, **kwargs)
        logger.debug(f"Created index on {coll.name}.{name}")
    except Exception as e:
        if "already exists" in str(e).lower():
            logger.debug(f"Index on {coll.name}.{name} already exists")
        else:
            logger.warning(f"Could not create index on {coll.name}.{name}: {e}")


async def init_indexes():
    """Index initialization for collections."""
    logger.info("Starting database index initialization")

    await _ensure_index(documents_coll, [("subject_id", ASCENDING)], "subject_id", unique=True)
    await _ensure_index(documents_coll, [("status", ASCENDING)], "status")
    await _ensure_index(profiles_coll, [("subject_id", ASCENDING)], "subject_id", unique=True)
    await _ensure_index(requirements_coll, [("target_id", ASCENDING)], "target_id", unique=True)
    await _ensure_index(
        match_scores_coll,
        [("subject_id", ASCENDING), ("target_id", ASCENDING)],
        "(subject_id, target_id)",
        unique=True,
    )
    await _ensure_index(
        match_scores_coll,
        [("subject_id", ASCENDING), ("overall_score", DESCENDING)],
        "(subject_id, overall_score)",
    )
    await _ensure_index(
        skill_gaps_coll,
        [("subject_id", ASCENDING), ("target_id", ASCENDING)],
        "(subject_id, target_id)",
        unique=True,
    )
    await _ensure_index(job_progress_coll, [("key", ASCENDING)], "key", unique=True)
    # Mongo drops progress rows once expires_at has passed
    await _ensure_index(job_progress_coll, [("expires_at", ASCENDING)], "expires_at", expireAfterSeconds=0)

    logger.info("Database index initialization completed")


def strip_id(doc):
    if not doc:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc
