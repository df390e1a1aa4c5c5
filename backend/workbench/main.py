import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, accounts, executor, history, membership, repository, workspaces
from .auth import get_current_user
from .config import Settings, get_settings
from .db import Database, get_db
from .errors import ApiError, ErrorCode
from .logging_setup import setup_logging
from .models import User
from .rbac import ROLE_DEFINITIONS
from .schemas import (
    AssignRole,
    EnvironmentUpdate,
    ExecuteRequest,
    LoginUser,
    RegisterUser,
    SaveEnv,
    SaveRequest,
    SaveWorkspace,
    UpdateRole,
)

logger = logging.getLogger(__name__)


def ok(data=None, message: Optional[str] = None, status_code: int = 200):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if status_code == 200:
        return body
    return JSONResponse(body, status_code=status_code)


def fail(code: ErrorCode, message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "message": message, "code": code.value}, status_code=status_code)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg')}" if loc else "Invalid request payload"
        return fail(ErrorCode.VALIDATION_FAILED, message, 400)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return fail(ErrorCode.ENDPOINT_NOT_FOUND, "API endpoint not found", 404)
        return fail(ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.VALIDATION_FAILED,
                    str(exc.detail), exc.status_code)

    @app.exception_handler(SQLAlchemyError)
    async def _storage_error(request: Request, exc: SQLAlchemyError):
        logger.error("storage failure on %s %s: %s", request.method, request.url.path, exc,
                     extra={"error_code": ErrorCode.INTERNAL_ERROR.value})
        return fail(ErrorCode.INTERNAL_ERROR, "Internal server error", 500)

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return fail(ErrorCode.INTERNAL_ERROR, "Internal server error", 500)


def create_app(settings: Optional[Settings] = None, http_transport=None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = app.state.database
        database.create_all()
        db = database.session()
        try:
            repository.seed_roles(db, ROLE_DEFINITIONS)
        finally:
            db.close()
        logger.info("database ready")
        yield
        database.dispose()
        logger.info("database connections closed")

    app = FastAPI(title="API Workbench Backend", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = Database(settings.DATABASE_URL)
    # None means a real network transport
    app.state.http_transport = http_transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(
            "%s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={"method": request.method, "path": request.url.path, "status_code": response.status_code},
        )
        return response

    install_error_handlers(app)
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health():
        return {"success": True, "status": "ok", "version": __version__}

    # --- auth ---

    @app.post("/auth/register")
    def register(payload: RegisterUser, request: Request, db: Session = Depends(get_db)):
        data = accounts.register(db, payload, request.app.state.settings)
        return ok(data, "User created", status_code=201)

    @app.post("/auth/login")
    def login(payload: LoginUser, request: Request, db: Session = Depends(get_db)):
        return ok(accounts.login(db, payload, request.app.state.settings), "Login success")

    @app.get("/auth/profile")
    def profile(user: User = Depends(get_current_user)):
        return ok({"user": accounts.serialize_user(user)})

    @app.delete("/users/{user_id}")
    def delete_user(user_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        accounts.delete_user(db, user.id, user_id)
        return ok(message="User deleted successfully")

    # --- workspaces, environments, requests ---

    @app.post("/workspaces")
    def create_workspace(payload: SaveWorkspace, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        ws = workspaces.create_workspace(db, user.id, payload.name, payload.description)
        return ok({"workspace": workspaces.serialize_workspace(ws, "owner")}, "Workspace created successfully", 201)

    @app.get("/workspaces/{workspace_id}")
    def get_workspace(workspace_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        return ok({"workspace": workspaces.get_workspace(db, workspace_id, user.id)})

    @app.post("/workspaces/{workspace_id}/environments")
    def create_env(
        workspace_id: int, payload: SaveEnv, user: User = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        env = workspaces.create_environment(db, workspace_id, user.id, payload)
        return ok({"environment": env}, "Environment created successfully", 201)

    @app.patch("/environments/{environment_id}")
    @app.put("/environments/{environment_id}")
    def update_env(
        environment_id: int,
        payload: EnvironmentUpdate,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        env = workspaces.update_environment(db, environment_id, user.id, payload)
        return ok({"environment": env}, "Environment updated successfully")

    @app.post("/workspaces/{workspace_id}/requests")
    def save_request(
        workspace_id: int, payload: SaveRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        item = workspaces.create_request(db, workspace_id, user.id, payload)
        return ok({"request": item}, "Request created successfully", 201)

    @app.get("/requests/{request_id}")
    def get_request(request_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        return ok({"request": workspaces.get_request(db, request_id, user.id)})

    # --- execution & history ---

    @app.post("/requests/{request_id}/execute")
    async def execute_request(
        request_id: int,
        request: Request,
        payload: Optional[ExecuteRequest] = None,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        record = await executor.execute(
            db,
            request_id,
            user.id,
            payload.environment_id if payload else None,
            settings=request.app.state.settings,
            transport=request.app.state.http_transport,
        )
        return ok({"execution": history.serialize(record)}, "Request executed successfully")

    @app.get("/requests/{request_id}/history")
    def request_history(
        request_id: int,
        request: Request,
        limit: Optional[int] = Query(None),
        offset: Optional[int] = Query(None),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        limit, offset = history.page(limit, offset, request.app.state.settings)
        return ok({"history": history.list_by_request(db, request_id, user.id, limit, offset)})

    @app.get("/workspaces/{workspace_id}/history")
    def workspace_history(
        workspace_id: int,
        request: Request,
        limit: Optional[int] = Query(None),
        offset: Optional[int] = Query(None),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        limit, offset = history.page(limit, offset, request.app.state.settings)
        return ok({"history": history.list_by_workspace(db, workspace_id, user.id, limit, offset)})

    @app.get("/history/{history_id}")
    def get_history_entry(history_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        return ok({"entry": history.get_entry(db, history_id, user.id)})

    @app.delete("/history/{history_id}")
    def delete_history_entry(history_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        history.delete_entry(db, history_id, user.id)
        return ok(message="History entry deleted successfully")

    # --- membership ---

    @app.get("/workspaces/{workspace_id}/roles")
    @app.get("/workspaces/{workspace_id}/members")
    def list_members(workspace_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
        return ok(membership.list_members(db, workspace_id, user.id))

    @app.post("/workspaces/{workspace_id}/roles")
    @app.post("/workspaces/{workspace_id}/members")
    def assign_role(
        workspace_id: int, payload: AssignRole, user: User = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        data = membership.assign_role(db, workspace_id, user.id, payload.user_id, payload.role_id)
        return ok(data, "Role assigned successfully", 201)

    @app.put("/workspaces/{workspace_id}/roles/{target_user_id}")
    @app.put("/workspaces/{workspace_id}/members/{target_user_id}")
    def update_role(
        workspace_id: int,
        target_user_id: int,
        payload: UpdateRole,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        data = membership.update_role(db, workspace_id, user.id, target_user_id, payload.role_id)
        return ok(data, "User role updated successfully")

    @app.delete("/workspaces/{workspace_id}/roles/{target_user_id}")
    @app.delete("/workspaces/{workspace_id}/members/{target_user_id}")
    def remove_member(
        workspace_id: int, target_user_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        membership.remove_member(db, workspace_id, user.id, target_user_id)
        return ok(message="User removed from workspace successfully")


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "workbench.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
