from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Security, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from bucketfs.config import Settings, get_settings
from bucketfs.errors import AuthenticationError, FilesError
from bucketfs.models.files import CreateUserRequest, ErrorKind, LoginRequest, Outcome, User
from bucketfs.services import CatalogStore, Database, FilesStore, IdentityService, S3Service
from bucketfs.services.files import parse_request
from bucketfs.services.identity import ADMIN_ROLE
import logging

STATUS_CODES = {
    ErrorKind.validation: status.HTTP_400_BAD_REQUEST,
    ErrorKind.unauthorized: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.partial_failure: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.store_unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.internal: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def to_response(outcome: Outcome, field: Optional[str] = None) -> JSONResponse:
    """Render an outcome as {"ok": ..., field: data} or {"ok": false, "error": message}."""
    if outcome.ok:
        content: Dict[str, Any] = {"ok": True}
        if field is not None:
            content[field] = outcome.data
        return JSONResponse(content=jsonable_encoder(content))
    return JSONResponse(
        status_code=STATUS_CODES.get(outcome.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content={"ok": False, "error": outcome.message, "kind": outcome.kind.value if outcome.kind else None})


def error_response(error: FilesError) -> JSONResponse:
    return JSONResponse(status_code=STATUS_CODES.get(error.kind, 500), content={"ok": False, "error": str(error)})


def make_router(files_store: FilesStore, identity: IdentityService) -> APIRouter:
    """Make the HTTP routes of the files operations.

    Args:
        files_store (FilesStore): The files service.
        identity (IdentityService): Resolves the bearer tokens to users.

    Returns:
        APIRouter: The routes, under /api.
    """
    router = APIRouter(prefix="/api")
    bearer = HTTPBearer(auto_error=False)

    async def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer)) -> str:
        if credentials is None or not credentials.credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return credentials.credentials

    async def get_user(token: str = Depends(get_token)) -> User:
        try:
            user = await identity.resolve_user(token)
        except Exception as e:
            logging.error(f"Auth error: {e}")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Auth error")
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return user

    async def get_admin(user: User = Depends(get_user)) -> User:
        if user.role != ADMIN_ROLE:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    @router.get("/health")
    async def health():
        return {"ok": True}

    @router.get("/db-check")
    async def db_check():
        try:
            await files_store.health()
            return {"ok": True}
        except Exception as e:
            logging.error(f"Database error: {e}")
            return JSONResponse(status_code=500, content={"ok": False, "error": "Database error"})

    @router.get("/db-info")
    async def db_info(user: User = Depends(get_user)):
        outcome = await files_store.db_info()
        if not outcome.ok:
            return to_response(outcome)
        return {"ok": True, **outcome.data}

    @router.post("/login")
    async def login(body: Optional[Dict[str, Any]] = Body(default=None)):
        try:
            request = parse_request(LoginRequest, body)
            token, user = await identity.login(request.email, request.password)
        except AuthenticationError as e:
            return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"ok": False, "error": str(e)})
        except FilesError as e:
            return error_response(e)
        return {"ok": True, "token": token, "user": user.model_dump()}

    @router.get("/me")
    async def me(user: User = Depends(get_user)):
        return {"ok": True, "user": user.model_dump()}

    @router.post("/logout")
    async def logout(token: str = Depends(get_token), user: User = Depends(get_user)):
        await identity.logout(token)
        return {"ok": True}

    @router.get("/files")
    async def list_files(prefix: str = Query(default=""), user: User = Depends(get_user)):
        return to_response(await files_store.list_files(prefix), "files")

    @router.get("/files/download")
    async def download(key: Optional[str] = Query(default=None), user: User = Depends(get_user)):
        return to_response(await files_store.download(key), "url")

    @router.post("/files/upload")
    async def upload(body: Optional[Dict[str, Any]] = Body(default=None), user: User = Depends(get_user)):
        return to_response(await files_store.upload(body, user))

    @router.post("/folders")
    async def create_folder(body: Optional[Dict[str, Any]] = Body(default=None), user: User = Depends(get_user)):
        return to_response(await files_store.create_folder(body, user))

    @router.post("/files/copy")
    async def copy(body: Optional[Dict[str, Any]] = Body(default=None), user: User = Depends(get_user)):
        return to_response(await files_store.copy(body, user))

    @router.delete("/files")
    async def delete(key: Optional[str] = Query(default=None), user: User = Depends(get_user)):
        return to_response(await files_store.delete(key, user))

    @router.get("/admin/logs")
    async def logs(limit: int = Query(default=50, ge=1, le=500), admin: User = Depends(get_admin)):
        return to_response(await files_store.recent_activity(limit), "logs")

    @router.post("/admin/reconcile")
    async def reconcile(prefix: str = Query(default=""), admin: User = Depends(get_admin)):
        return to_response(await files_store.reconcile(prefix), "report")

    @router.get("/admin/users")
    async def list_users(admin: User = Depends(get_admin)):
        try:
            users = await identity.list_users()
        except Exception as e:
            logging.error(f"Failed to load users: {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"ok": False, "error": "Failed to load users"})
        return {"ok": True, "users": [user.model_dump() for user in users]}

    @router.post("/admin/users")
    async def create_user(body: Optional[Dict[str, Any]] = Body(default=None), admin: User = Depends(get_admin)):
        try:
            request = parse_request(CreateUserRequest, body)
            user = await identity.create_user(
                request.email, request.password, full_name=request.full_name, role=request.role)
        except FilesError as e:
            return error_response(e)
        return {"ok": True, "user": user.model_dump()}

    @router.delete("/admin/users/{user_id}")
    async def delete_user(user_id: str, admin: User = Depends(get_admin)):
        if user_id == admin.id:
            return JSONResponse(status_code=400, content={"ok": False, "error": "Cannot delete your own account"})
        if not await identity.delete_user(user_id):
            return JSONResponse(status_code=404, content={"ok": False, "error": f"User {user_id} does not exist"})
        return {"ok": True}

    return router


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Wire the services from the settings and make the application."""
    settings = settings or get_settings()
    s3_service = S3Service.from_settings(settings)
    if not s3_service.is_configured():
        logging.warning("Missing AWS S3 environment variables. S3 features will fail.")
    database = Database(settings.database_url)
    files_store = FilesStore(
        s3_service,
        CatalogStore(database),
        page_size=settings.list_page_size,
        max_upload_size=settings.max_upload_size)
    identity = IdentityService(database, token_ttl_days=settings.token_ttl_days)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await s3_service.close()
        await database.close()

    app = FastAPI(title="bucketfs", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_origin],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(make_router(files_store, identity))
    app.state.files_store = files_store
    app.state.identity = identity
    return app
