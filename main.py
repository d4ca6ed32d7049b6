import asyncio
import logging
import math
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson.errors import BSONError
from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings
from database import PRODUCTS, USERS, MongoStore, serialize_doc
from errors import ApiError, DuplicateKey, NotFound, StoreError, ValidationFailed, describe_errors
from schemas import Product, User

logger = logging.getLogger(__name__)

ENDPOINTS = [
    "GET /api/test - Probar API",
    "GET /api/usuarios - Ver usuarios",
    "POST /api/usuarios - Crear usuario",
    "GET /api/usuarios/:id - Ver usuario específico",
    "PUT /api/usuarios/:id - Actualizar usuario",
    "DELETE /api/usuarios/:id - Desactivar usuario",
    "GET /api/productos - Ver productos",
    "POST /api/productos - Crear producto",
    "GET /api/estadisticas - Ver estadísticas",
]

RECENT_WINDOW = timedelta(days=7)


def get_store(request: Request) -> MongoStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def paginate(store, collection: str, filt: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
    total = await store.count_documents(collection, filt)
    docs = await store.get_documents(collection, filt, skip=(page - 1) * limit, limit=limit)
    return {
        "success": True,
        "data": [serialize_doc(d) for d in docs],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
        },
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = app.state.store
    owns_store = store is None
    if owns_store:
        settings = app.state.settings
        store = MongoStore.from_url(settings.database_url, settings.database_name)
        app.state.store = store
        try:
            await store.ping()
            logger.info("Connected to MongoDB database %s", settings.database_name)
        except PyMongoError as e:
            # Keep serving; requests fail with 500 until the store is reachable
            # and the email index is built on the first user write.
            logger.error("Could not connect to MongoDB: %s", e)
        else:
            try:
                await store.ensure_indexes()
            except PyMongoError as e:
                logger.error("Could not create unique email index: %s", e)
    yield
    if owns_store:
        await store.close()


def create_app(settings: Optional[Settings] = None, store=None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Usuarios y Productos API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, status_code, elapsed_ms)

    # Error envelopes

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = ValidationFailed(describe_errors(exc.errors()))
        return JSONResponse(status_code=err.status_code, content=err.payload())

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        logger.info("Duplicate key on %s %s", request.method, request.url.path)
        err = DuplicateKey()
        return JSONResponse(status_code=err.status_code, content=err.payload())

    @app.exception_handler(PyMongoError)
    async def store_error_handler(request: Request, exc: PyMongoError):
        logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
        err = StoreError(str(exc))
        return JSONResponse(status_code=err.status_code, content=err.payload())

    # Raised by the BSON encoder before anything reaches the server,
    # e.g. integers wider than 64 bits in a body or in skip
    @app.exception_handler(BSONError)
    @app.exception_handler(OverflowError)
    async def unencodable_handler(request: Request, exc: Exception):
        logger.info("Unencodable value on %s %s: %s", request.method, request.url.path, exc)
        err = ValidationFailed(f"Valor no almacenable: {exc}")
        return JSONResponse(status_code=err.status_code, content=err.payload())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        err = ApiError("Error interno del servidor")
        return JSONResponse(status_code=err.status_code, content=err.payload())

    @app.exception_handler(StarletteHTTPException)
    async def route_not_found_handler(request: Request, exc: StarletteHTTPException):
        # 405 too: a known path with an unsupported method is just an unknown route
        if exc.status_code in (404, 405):
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "message": "Ruta no encontrada. Ve a / para ver todas las rutas disponibles.",
                    "path": request.url.path,
                    "method": request.method,
                    "endpoints": ENDPOINTS,
                },
            )
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})

    # Metadata

    @app.get("/")
    def read_root():
        return {
            "success": True,
            "message": "API MongoDB funcionando",
            "endpoints": ENDPOINTS,
            "timestamp": now_utc(),
        }

    @app.get("/api/test")
    async def test_api(store=Depends(get_store)):
        response = {
            "success": True,
            "message": "API funcionando correctamente",
            "database": "connected",
            "collections": [],
            "timestamp": now_utc(),
        }
        try:
            await store.ping()
            response["collections"] = (await store.list_collection_names())[:10]
        except PyMongoError as e:
            response["database"] = f"error: {str(e)[:100]}"
        return response

    # Usuarios

    @app.get("/api/usuarios")
    async def list_users(
        active: Optional[str] = None,
        limit: int = Query(50, ge=1),
        page: int = Query(1, ge=1),
        store=Depends(get_store),
        settings: Settings = Depends(get_settings),
    ):
        if active is not None:
            filt = {"active": active.lower() == "true"}
        elif settings.users_active_default is not None:
            filt = {"active": settings.users_active_default}
        else:
            filt = {}
        return await paginate(store, USERS, filt, page, limit)

    @app.get("/api/usuarios/{user_id}")
    async def get_user(user_id: str, store=Depends(get_store)):
        doc = await store.get_document(USERS, user_id)
        if not doc:
            raise NotFound("Usuario no encontrado")
        return {"success": True, "data": serialize_doc(doc)}

    @app.post("/api/usuarios", status_code=201)
    async def create_user(user: User, store=Depends(get_store)):
        doc = await store.create_document(USERS, user.model_dump())
        data = serialize_doc(doc)
        logger.info("Created user %s", data["id"])
        return {"success": True, "message": "Usuario creado exitosamente", "data": data}

    @app.put("/api/usuarios/{user_id}")
    async def update_user(user_id: str, payload: Dict[str, Any] = Body(...), store=Depends(get_store)):
        existing = await store.get_document(USERS, user_id)
        if not existing:
            raise NotFound("Usuario no encontrado")

        # Unknown keys (id, created_at, ...) are ignored, like on create
        changes = {k: v for k, v in payload.items() if k in User.model_fields}
        if not changes:
            return {"success": True, "message": "Sin cambios", "data": serialize_doc(existing)}

        current = {k: v for k, v in existing.items() if k not in ("_id", "created_at")}
        try:
            merged = User.model_validate({**current, **changes})
        except ValidationError as e:
            raise ValidationFailed(describe_errors(e.errors()))
        validated = merged.model_dump()

        doc = await store.update_document(USERS, user_id, {k: validated[k] for k in changes})
        if not doc:
            raise NotFound("Usuario no encontrado")
        logger.info("Updated user %s fields=%s", user_id, sorted(changes))
        return {"success": True, "message": "Usuario actualizado exitosamente", "data": serialize_doc(doc)}

    @app.delete("/api/usuarios/{user_id}")
    async def deactivate_user(user_id: str, store=Depends(get_store)):
        doc = await store.update_document(USERS, user_id, {"active": False})
        if not doc:
            raise NotFound("Usuario no encontrado")
        logger.info("Deactivated user %s", user_id)
        return {
            "success": True,
            "message": "Usuario desactivado exitosamente",
            "data": {"id": str(doc["_id"]), "active": doc["active"]},
        }

    # Productos

    @app.get("/api/productos")
    async def list_products(
        category: Optional[str] = None,
        limit: int = Query(50, ge=1),
        page: int = Query(1, ge=1),
        store=Depends(get_store),
    ):
        filt: Dict[str, Any] = {"active": True}
        if category:
            filt["category"] = {"$regex": re.escape(category), "$options": "i"}
        return await paginate(store, PRODUCTS, filt, page, limit)

    @app.post("/api/productos", status_code=201)
    async def create_product(product: Product, store=Depends(get_store)):
        doc = await store.create_document(PRODUCTS, product.model_dump())
        data = serialize_doc(doc)
        logger.info("Created product %s", data["id"])
        return {"success": True, "message": "Producto creado exitosamente", "data": data}

    # Estadísticas

    @app.get("/api/estadisticas")
    async def get_statistics(store=Depends(get_store)):
        now = now_utc()
        active_users, inactive_users, recent_users, active_products = await asyncio.gather(
            store.count_documents(USERS, {"active": True}),
            store.count_documents(USERS, {"active": False}),
            store.count_documents(USERS, {"created_at": {"$gte": now - RECENT_WINDOW}}),
            store.count_documents(PRODUCTS, {"active": True}),
        )
        return {
            "success": True,
            "data": {
                "usuarios": {
                    "total": active_users,
                    "inactivos": inactive_users,
                    "registrados": active_users + inactive_users,
                    "ultimos_7_dias": recent_users,
                },
                "productos": {"total": active_products},
                "fecha_consulta": now,
            },
        }

    return app


if __name__ == "__main__":
    import uvicorn
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
