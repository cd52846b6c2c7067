from tortoise import Tortoise, connections

from core.config import settings

MODEL_MODULES = [
    "models.profile",
    "models.claim",
    "models.chat_message",
]

TORTOISE_ORM = {
    "connections": {
        "default": settings.DB_URL
    },
    "apps": {
        "models": {
            "models": MODEL_MODULES + ["aerich.models"],
            "default_connection": "default",
        }
    },
    "use_tz": True,
    "timezone": "UTC",
}


async def init_db(config: dict = None, generate_schemas: bool = True):
    await Tortoise.init(config=config or TORTOISE_ORM)
    if generate_schemas:
        await Tortoise.generate_schemas()


async def close_db():
    await connections.close_all()
