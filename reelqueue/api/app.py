"""
HTTP surface of the catalog.

Reads go straight to the document store. Mutations pass the authorization
gate, are normalized and published to the mutation stream; the response
only says the mutation was queued. A separate trigger (/process-queue)
drains the stream and applies what was queued.

Usage:
    uvicorn --factory reelqueue.api.app:create_app
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..auth import AuthClaims, hash_password, issue_token, require_auth, verify_password
from ..catalog import (
    CollectionSchema,
    get_schema,
    movie_filter,
    prepare_create,
    prepare_update,
    present_document,
    sort_documents,
)
from ..config import AppConfig
from ..errors import (
    AuthError,
    BrokerError,
    CatalogValidationError,
    QueueError,
    ReelqueueError,
)
from ..mutations import MutationMessage, Operation
from .dependencies import Services, current_user, get_services

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"

CORS_ALLOW_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "Authorization"]


class NotFound(ReelqueueError):
    """Unknown collection or document."""


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def auth_error(_request: Request, exc: AuthError) -> JSONResponse:
        return _error(401, str(exc))

    @app.exception_handler(CatalogValidationError)
    async def validation_error(_request: Request, exc: CatalogValidationError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Malformed request body")

    @app.exception_handler(NotFound)
    async def not_found(_request: Request, exc: NotFound) -> JSONResponse:
        return _error(404, str(exc) or "Not found")

    @app.exception_handler(BrokerError)
    async def broker_error(_request: Request, exc: BrokerError) -> JSONResponse:
        logger.error("Broker unavailable: %s", exc)
        return _error(503, str(exc))

    @app.exception_handler(QueueError)
    async def queue_error(_request: Request, exc: QueueError) -> JSONResponse:
        logger.error("Queue operation failed: %s", exc)
        return _error(503, str(exc))

    @app.exception_handler(ReelqueueError)
    async def generic_error(_request: Request, exc: ReelqueueError) -> JSONResponse:
        logger.error("Request failed: %s", exc)
        return _error(500, str(exc))


def _schema_or_404(collection: str) -> CollectionSchema:
    schema = get_schema(collection)
    if schema is None:
        raise NotFound(f"Unknown collection: {collection}")
    return schema


def _queued(message: MutationMessage, entry_id: str) -> JSONResponse:
    content: dict[str, Any] = {
        "queued": True,
        "operation": message.operation.value,
        "collection": message.collection,
        "entryId": entry_id,
    }
    if message.id is not None:
        content["id"] = message.id
    return JSONResponse(status_code=202, content=content)


def _register_system_routes(app: FastAPI) -> None:
    @app.api_route("/process-queue", methods=["GET", "POST"])
    def process_queue(request: Request, services: Services = Depends(get_services)) -> dict[str, Any]:
        if services.config.drain_requires_auth:
            require_auth(request.headers, services.config.auth)
        report = services.drain.drain()
        return report.to_dict()

    @app.get("/broker/health")
    def broker_health(
        connect: bool = Query(False),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        if connect:
            services.connections.acquire_channel()
        return {"ok": True, **services.connections.status()}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def _register_auth_routes(app: FastAPI) -> None:
    def _credentials(payload: Any) -> tuple[str, str]:
        if not isinstance(payload, dict):
            raise CatalogValidationError("Request body must be a JSON object")
        username = payload.get("username")
        password = payload.get("password")
        if not username or not password:
            raise CatalogValidationError("Username and password are required")
        return str(username), str(password)

    @app.post("/auth/register", status_code=201)
    def register(payload: Any = Body(None), services: Services = Depends(get_services)) -> dict[str, Any]:
        username, password = _credentials(payload)
        if services.store.find_by_field(USERS_COLLECTION, "username", username) is not None:
            raise CatalogValidationError("User already exists")

        user_id = services.store.insert(
            USERS_COLLECTION,
            {"username": username, "password": hash_password(password)},
        )
        logger.info("Registered user %s", username)
        token = issue_token(user_id, username, services.config.auth)
        return {"token": token, "user": {"id": user_id, "username": username}}

    @app.post("/auth/login")
    def login(payload: Any = Body(None), services: Services = Depends(get_services)) -> Any:
        username, password = _credentials(payload)
        user = services.store.find_by_field(USERS_COLLECTION, "username", username)
        if user is None or not verify_password(password, str(user.get("password", ""))):
            return _error(400, "Invalid credentials")
        token = issue_token(user["_id"], username, services.config.auth)
        return {"token": token, "user": {"id": user["_id"], "username": username}}


def _register_catalog_routes(app: FastAPI) -> None:
    @app.get("/{collection}")
    def list_documents(
        collection: str,
        q: Optional[str] = None,
        producer_id: Optional[str] = Query(None, alias="producerId"),
        limit: int = Query(20, ge=0),
        skip: int = Query(0, ge=0),
        services: Services = Depends(get_services),
    ) -> list[dict[str, Any]]:
        schema = _schema_or_404(collection)
        if collection != "movies":
            documents = sort_documents(schema, services.store.find_all(collection))
        else:
            documents = services.store.find_all(collection, movie_filter(q, producer_id))
            documents = sort_documents(schema, documents)[skip : skip + limit]
        return [present_document(schema, doc) for doc in documents]

    @app.get("/{collection}/{doc_id}")
    def get_document(
        collection: str,
        doc_id: str,
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        schema = _schema_or_404(collection)
        document = services.store.find_one(collection, doc_id)
        if document is None:
            raise NotFound("Not found")
        return present_document(schema, document)

    @app.post("/{collection}")
    def create_document(
        collection: str,
        payload: Any = Body(None),
        user: AuthClaims = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        schema = _schema_or_404(collection)
        message = MutationMessage(
            operation=Operation.CREATE,
            collection=collection,
            user_id=user.user_id,
            data=prepare_create(schema, payload),
        )
        return _queued(message, services.producer.enqueue(message))

    @app.api_route("/{collection}/{doc_id}", methods=["PUT", "PATCH"])
    def update_document(
        collection: str,
        doc_id: str,
        payload: Any = Body(None),
        user: AuthClaims = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        schema = _schema_or_404(collection)
        message = MutationMessage(
            operation=Operation.UPDATE,
            collection=collection,
            user_id=user.user_id,
            id=doc_id,
            data=prepare_update(schema, payload),
        )
        return _queued(message, services.producer.enqueue(message))

    @app.delete("/{collection}/{doc_id}")
    def delete_document(
        collection: str,
        doc_id: str,
        user: AuthClaims = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        _schema_or_404(collection)
        message = MutationMessage(
            operation=Operation.DELETE,
            collection=collection,
            user_id=user.user_id,
            id=doc_id,
        )
        return _queued(message, services.producer.enqueue(message))


def create_app(
    config: Optional[AppConfig] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    When ``services`` is given the caller owns it and is responsible for
    closing it; otherwise services are built from ``config`` (or the
    environment) and closed on shutdown.
    """
    owns_services = services is None
    if services is None:
        services = Services.build(config or AppConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.store.ensure_schema()
        logger.info("Catalog API ready (broker %s)", services.connections.status()["url"])
        yield
        if owns_services:
            services.close()

    app = FastAPI(title="reelqueue", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )

    _install_error_handlers(app)
    _register_system_routes(app)
    _register_auth_routes(app)
    _register_catalog_routes(app)
    return app

