from fastapi import FastAPI
from fastapi.middleware import Middleware
from fastapi.middleware.cors import CORSMiddleware

from api.v1.chat import router as chat_router
from api.v1.ws import router as ws_router
from core.logger import app_logger
from init_db import close_db, init_db

middleware = [
    Middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
]

app = FastAPI(
    title="GlasschadenMelden Chat Backend",
    middleware=middleware
)


@app.on_event("startup")
async def startup():
    await init_db()
    app_logger.info("🚀 Claim chat backend started")


@app.on_event("shutdown")
async def shutdown():
    await close_db()


app.include_router(chat_router)
app.include_router(ws_router)
