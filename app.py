from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dotenv import load_dotenv

from bizstore import paths
from bizstore.disk_store import DiskKeyValueStore
from bizstore.errors import DocumentNotFoundError, SubstrateIOError
from bizstore.interfaces import KeyValueStore
from bizstore.memory_store import MemoryKeyValueStore
from bizstore.repositories import BusinessDataRepository
from bizstore.store import DocumentStore
from settings import Settings, configure_logging, get_settings

logger = logging.getLogger(__name__)


def build_kv_store(settings: Settings) -> KeyValueStore:
    if not settings.persist_to_disk:
        return MemoryKeyValueStore()
    base = paths.ensure_dir(settings.data_dir) if settings.data_dir else paths.data_dir()
    root = paths.kv_dir(base)
    logger.info("Persisting documents under %s", root)
    return DiskKeyValueStore(root)


def create_app(settings: Settings | None = None, kv: KeyValueStore | None = None) -> FastAPI:
    load_dotenv("local.env")
    settings = settings or get_settings()
    configure_logging(settings)

    from endpoints.business_endpoints import router as business_router

    store = DocumentStore(kv if kv is not None else build_kv_store(settings))

    app = FastAPI()
    app.state.settings = settings
    app.state.store = store
    app.state.business = BusinessDataRepository(store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SubstrateIOError)
    async def substrate_error_handler(request: Request, exc: SubstrateIOError):
        logger.error("STORAGE FAILURE on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse({"detail": "storage_unavailable"}, status_code=503)

    @app.exception_handler(DocumentNotFoundError)
    async def not_found_handler(request: Request, exc: DocumentNotFoundError):
        return JSONResponse({"detail": "not_found", "collection": exc.collection, "id": exc.doc_id}, status_code=404)

    @app.get("/health")
    async def health():
        return {"status": "ok", "persistToDisk": settings.persist_to_disk}

    app.include_router(business_router)

    return app


app = create_app()
