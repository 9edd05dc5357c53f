from loguru import logger
from tortoise import Tortoise, connections

from ingestor.utils.db_utils import to_tortoise_url


MODEL_MODULES = [
    "ingestor.storage.models.queue_model",
    "ingestor.storage.models.document_model",
]


async def init_postgres(database_url: str) -> None:
    """
    Connect Tortoise and create the queue and document tables if missing.
    """
    db_url = to_tortoise_url(database_url)

    logger.info("Initializing database and ORM models...")
    await Tortoise.init(db_url=db_url, modules={"models": MODEL_MODULES})
    await Tortoise.generate_schemas(safe=True)
    logger.info("Database tables created or verified.")


async def close_postgres() -> None:
    await connections.close_all()
