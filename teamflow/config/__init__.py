from .database import close_db_connection, generate_schemas, get_tortoise_config, init_db
from .settings import TeamsSettings, get_settings, settings

__all__ = [
    "settings",
    "get_settings",
    "TeamsSettings",
    "init_db",
    "close_db_connection",
    "generate_schemas",
    "get_tortoise_config",
]
