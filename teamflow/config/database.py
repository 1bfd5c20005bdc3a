import logging
from typing import Any, Dict, Optional

from tortoise import Tortoise

from .settings import settings

logger = logging.getLogger(__name__)

MODEL_MODULES = [
    "teamflow.models.team",
    "teamflow.models.membership",
    "teamflow.models.invitation",
    "teamflow.models.activity",
]

TORTOISE_ORM_CONFIG = {
    "connections": {"default": str(settings.DATABASE_URL)},
    "apps": {
        "models": {
            "models": [*MODEL_MODULES, "aerich.models"],
            "default_connection": "default",
        }
    },
    "use_tz": True,
    "timezone": "UTC",
}


async def init_db(db_url: Optional[str] = None) -> None:
    try:
        logger.info("Initializing database connection")
        if db_url:
            await Tortoise.init(
                db_url=db_url,
                modules={"models": MODEL_MODULES},
                use_tz=True,
                timezone="UTC",
            )
        else:
            await Tortoise.init(config=TORTOISE_ORM_CONFIG)

        logger.info("Database connection established")
    except Exception as e:
        logger.exception(f"Failed to initialize database: {str(e)}")
        raise


async def generate_schemas() -> None:
    try:
        logger.info("Generating database schemas")
        await Tortoise.generate_schemas()
        logger.info("Database schemas generated")
    except Exception as e:
        logger.exception(f"Failed to generate schemas: {str(e)}")
        raise


async def close_db_connection() -> None:
    try:
        logger.info("Closing database connection")
        await Tortoise.close_connections()
        logger.info("Database connection closed")
    except Exception as e:
        logger.exception(f"Error closing database connection: {str(e)}")
        raise


def get_tortoise_config() -> Dict[str, Any]:
    return TORTOISE_ORM_CONFIG
