from fastapi import FastAPI
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.db.base import dispose_engine, get_session_maker, init_models
from app.core.logging import get_logger, setup_logging
from app.apis.arena.main import router as arena_router
from app.modules.arena.engine import MatchEngine
from app.modules.arena.matchmaking import MatchmakingService
from app.modules.arena.sql_store import SqlMatchStore
from app.modules.arena.store import InMemoryMatchStore

import uvicorn
from fastapi.middleware.cors import CORSMiddleware

logger = get_logger(__name__)


async def build_store():
    if settings.arena.store_backend == "sql":
        await init_models()
        return SqlMatchStore(get_session_maker())
    return InMemoryMatchStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    store = await build_store()
    app.state.match_store = store
    app.state.matchmaking = MatchmakingService(store)
    app.state.match_engine = MatchEngine(store)
    logger.info(f"Arena store ready ({settings.arena.store_backend})")
    try:
        yield
    finally:
        await store.aclose()
        if settings.arena.store_backend == "sql":
            await dispose_engine()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app.name, version=settings.app.version, lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(arena_router)

    @app.get("/")
    async def root():
        return {
            "status": "ok",
            "app": settings.app.name,
            "version": settings.app.version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    try:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.app.port,
            reload=not settings.app.is_production,
        )
    except Exception as e:
        print(f"An error occurred when starting the server: {e}.")
