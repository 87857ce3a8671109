import os
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Body, Depends, File, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthService
from config import Settings, configure_logging
from database import Repositories, new_id
from errors import AppError, AuthenticationError, AuthorizationError, InternalError, NotFoundError, ValidationError
from schemas import ContentFile, ContentPost, Session, isoformat, utcnow
from uploads import UploadStore, store_uploads

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"


# -----------------
# Request bodies
# -----------------
class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None

class ContentCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    pinned: Optional[bool] = None
    files: Optional[List[ContentFile]] = None

class ContentUpdate(ContentCreate):
    id: Optional[str] = None

class UserCreate(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


# -----------------
# Dependencies
# -----------------
def get_repos(request: Request) -> Repositories:
    return request.app.state.repos


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_uploads(request: Request) -> UploadStore:
    return request.app.state.uploads


def current_session(request: Request, auth: AuthService = Depends(get_auth)) -> Optional[Session]:
    return auth.find_valid_session(request.cookies.get(SESSION_COOKIE))


def require_session(session: Optional[Session] = Depends(current_session)) -> Session:
    if session is None:
        raise AuthorizationError()
    return session


def require_admin(session: Session = Depends(require_session)) -> Session:
    if session.role != "admin":
        raise AuthorizationError()
    return session


def set_session_cookie(response: Response, settings: Settings, token: str, max_age: int) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=settings.production,
        samesite="strict",
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Community Site API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    uploads = UploadStore(settings.uploads_dir, settings.uploads_url_prefix)
    repos = Repositories(settings.storage_dir, uploads)
    app.state.settings = settings
    app.state.uploads = uploads
    app.state.repos = repos
    app.state.auth = AuthService(repos, settings)

    uploads.ensure_dir()
    app.mount(settings.uploads_url_prefix, StaticFiles(directory=settings.uploads_dir), name="uploads")

    # -----------------
    # Error responses
    # -----------------
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": ValidationError.default_message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": InternalError.default_message})

    # -----------------
    # Basic routes
    # -----------------
    @app.get("/")
    def read_root():
        return {"message": "Community site backend running"}

    @app.get("/health")
    def health(repos: Repositories = Depends(get_repos)):
        root = repos.store.root
        return {
            "backend": "ok",
            "storage": "ok" if os.path.isdir(root) else "not initialized",
            "collections": sorted(f for f in os.listdir(root) if f.endswith(".json")) if os.path.isdir(root) else [],
            "time": isoformat(utcnow()),
        }

    # -----------------
    # Auth routes
    # -----------------
    @app.post("/auth/login")
    def login(payload: LoginRequest, response: Response, auth: AuthService = Depends(get_auth)):
        auth.ensure_default_admin()
        if not payload.username or not payload.password:
            raise ValidationError("Usuario y contrasena requeridos")
        user = auth.verify_credentials(payload.username, payload.password)
        session = auth.create_session(user)
        set_session_cookie(response, settings, session.token, settings.session_ttl_hours * 3600)
        logger.info("User %s logged in", user.username)
        return {"success": True, "user": {"id": user.id, "username": user.username, "role": user.role}}

    @app.post("/auth/logout")
    def logout(request: Request, response: Response, auth: AuthService = Depends(get_auth)):
        token = request.cookies.get(SESSION_COOKIE)
        if token:
            auth.delete_session(token)
        set_session_cookie(response, settings, "", 0)
        return {"success": True}

    @app.get("/auth/me")
    def me(request: Request, auth: AuthService = Depends(get_auth)):
        auth.ensure_default_admin()
        token = request.cookies.get(SESSION_COOKIE)
        if not token:
            raise AuthenticationError("No autenticado")
        session = auth.find_valid_session(token)
        if session is None:
            raise AuthenticationError("Sesion expirada")
        return {"user": {"id": session.user_id, "username": session.username, "role": session.role}}

    # -----------------
    # Content
    # -----------------
    @app.get("/content")
    def list_content(
        id: Optional[str] = None,
        category: Optional[str] = None,
        q: Optional[str] = None,
        repos: Repositories = Depends(get_repos),
    ):
        if id:
            post = repos.content.find_by_id(id)
            if post is None:
                raise NotFoundError("Contenido no encontrado")
            return {"post": post.to_json()}
        return {"content": [p.to_json() for p in repos.content.list_public(category, q)]}

    @app.get("/content/categories")
    def list_categories(repos: Repositories = Depends(get_repos)):
        return {"categories": repos.content.categories()}

    @app.post("/content")
    def create_content(
        payload: ContentCreate,
        session: Session = Depends(require_session),
        repos: Repositories = Depends(get_repos),
    ):
        if not payload.title or not payload.description:
            raise ValidationError("Titulo y descripcion requeridos")
        now = utcnow()
        post = ContentPost(
            id=new_id(),
            title=payload.title,
            description=payload.description,
            category=payload.category or "General",
            author=session.username,
            created_at=now,
            updated_at=now,
            files=payload.files or [],
            pinned=payload.pinned or False,
            tags=payload.tags or [],
        )
        try:
            repos.content.add(post)
        except OSError as e:
            raise InternalError(f"Error del servidor: {e.strerror}")
        repos.notifications.add(
            "new_content",
            "Nuevo contenido publicado",
            f'"{post.title}" ha sido publicado por {session.username}',
            content_id=post.id,
        )
        return {"success": True, "post": post.to_json()}

    @app.put("/content")
    def update_content(
        payload: ContentUpdate,
        session: Session = Depends(require_session),
        repos: Repositories = Depends(get_repos),
    ):
        if not payload.id:
            raise ValidationError("ID requerido")
        changes = payload.model_dump(exclude={"id"})
        post = repos.content.update(payload.id, changes)
        if post is None:
            raise NotFoundError("Contenido no encontrado")
        repos.notifications.add(
            "update_content",
            "Contenido actualizado",
            f'"{post.title}" ha sido actualizado por {session.username}',
            content_id=post.id,
        )
        return {"success": True, "post": post.to_json()}

    @app.delete("/content")
    def delete_content(
        id: Optional[str] = None,
        session: Session = Depends(require_session),
        repos: Repositories = Depends(get_repos),
    ):
        if not id:
            raise ValidationError("ID requerido")
        post = repos.content.delete_by_id(id)
        if post is None:
            raise NotFoundError("Contenido no encontrado")
        repos.notifications.add(
            "delete_content",
            "Contenido eliminado",
            f'"{post.title}" ha sido eliminado por {session.username}',
        )
        return {"success": True}

    # -----------------
    # Notifications
    # -----------------
    @app.get("/notifications")
    def list_notifications(
        limit: Optional[int] = Query(None, ge=1),
        repos: Repositories = Depends(get_repos),
    ):
        notifications = repos.notifications.get_all()
        if limit:
            notifications = notifications[:limit]
        return {"notifications": [n.to_json() for n in notifications]}

    # -----------------
    # Site settings
    # -----------------
    @app.get("/settings")
    def get_settings(repos: Repositories = Depends(get_repos)):
        return {"settings": repos.settings.get()}

    @app.put("/settings")
    def update_settings(
        payload: Dict[str, Any] = Body(...),
        session: Session = Depends(require_session),
        repos: Repositories = Depends(get_repos),
    ):
        settings_doc = repos.settings.save(payload)
        logger.info("Settings sections %s updated by %s", sorted(payload), session.username)
        return {"success": True, "settings": settings_doc}

    # -----------------
    # Uploads
    # -----------------
    @app.post("/upload")
    def upload(
        files: Optional[List[UploadFile]] = File(None),
        session: Session = Depends(require_session),
        uploads: UploadStore = Depends(get_uploads),
    ):
        if not files:
            raise ValidationError("No se enviaron archivos")
        try:
            stored = store_uploads(uploads, files)
        except OSError as e:
            raise InternalError(f"Error al subir archivos: {e.strerror}")
        return {"success": True, "files": [f.to_json() for f in stored]}

    # -----------------
    # Admin
    # -----------------
    @app.get("/admin/stats")
    def admin_stats(session: Session = Depends(require_session), repos: Repositories = Depends(get_repos)):
        posts = repos.content.get_all()
        files: Dict[str, int] = {"image": 0, "audio": 0, "video": 0, "document": 0, "other": 0}
        for post in posts:
            for f in post.files:
                files[f.type] += 1
        return {
            "posts": len(posts),
            "pinned": sum(1 for p in posts if p.pinned),
            "files": files,
            "totalFiles": sum(files.values()),
            "users": len(repos.users.get_all()),
            "notifications": len(repos.notifications.get_all()),
        }

    @app.get("/users")
    def list_users(session: Session = Depends(require_admin), repos: Repositories = Depends(get_repos)):
        return {"users": [u.summary() for u in repos.users.get_all()]}

    @app.post("/users")
    def create_user(
        payload: UserCreate,
        session: Session = Depends(require_admin),
        auth: AuthService = Depends(get_auth),
    ):
        user = auth.create_user(payload.username, payload.password, payload.role)
        return {"success": True, "user": {"id": user.id, "username": user.username, "role": user.role}}

    @app.delete("/users")
    def delete_user(
        id: Optional[str] = None,
        session: Session = Depends(require_session),
        auth: AuthService = Depends(get_auth),
    ):
        if id and id == session.user_id:
            raise ValidationError("No puedes eliminarte a ti mismo")
        require_admin(session)
        auth.delete_user(session, id)
        return {"success": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
