"""
Flat-file persistence for the site.

Every collection lives in its own pretty-printed JSON file under a storage
root. ``JsonStore`` does the raw file I/O; the repositories below wrap it
with typed accessors for each collection.
"""
import copy
import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Type
from uuid import uuid4

from pydantic import BaseModel, ValidationError as SchemaError

from schemas import AdminUser, ContentPost, Notification, Session, SiteSettings, utcnow

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 50

USERS_FILE = "users.json"
CONTENT_FILE = "content.json"
NOTIFICATIONS_FILE = "notifications.json"
SETTINGS_FILE = "settings.json"
SESSIONS_FILE = "sessions.json"


def new_id() -> str:
    return str(uuid4())


# -----------------
# JSON store
# -----------------
class ReadResult(NamedTuple):
    value: Any
    # True when the file existed but could not be parsed and ``value`` is the default
    recovered: bool = False


class JsonStore:
    def __init__(self, root: str):
        self.root = root
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def path(self, name: str) -> str:
        return os.path.join(self.root, name)

    def lock(self, path: str) -> threading.RLock:
        """Per-file lock; hold it across a read-modify-write cycle."""
        with self._guard:
            if path not in self._locks:
                self._locks[path] = threading.RLock()
            return self._locks[path]

    def read_result(self, path: str, default: Any) -> ReadResult:
        with self.lock(path):
            if not os.path.exists(path):
                value = copy.deepcopy(default)
                self.write(path, value)
                return ReadResult(value)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return ReadResult(json.load(f))
            except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
                logger.warning("Could not parse %s, falling back to default: %s", path, e)
                return ReadResult(copy.deepcopy(default), recovered=True)

    def read(self, path: str, default: Any) -> Any:
        return self.read_result(path, default).value

    def write(self, path: str, value: Any) -> None:
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        with self.lock(path):
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(value, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise


# -----------------
# Repositories
# -----------------
class Collection:
    """A JSON list of ``model`` records stored in ``filename``."""

    filename: str = ""
    model: Type[BaseModel] = BaseModel

    def __init__(self, store: JsonStore):
        self.store = store
        self.path = store.path(self.filename)

    def _load(self) -> List[Any]:
        raw = self.store.read(self.path, [])
        if not isinstance(raw, list):
            logger.warning("%s does not hold a list, ignoring its contents", self.path)
            return []
        records = []
        for item in raw:
            try:
                records.append(self.model.model_validate(item))
            except SchemaError as e:
                logger.warning("Skipping malformed record in %s: %s", self.path, e.errors()[:1])
        return records

    def get_all(self) -> List[Any]:
        return self._load()

    def save_all(self, records: Iterable[BaseModel]) -> None:
        self.store.write(self.path, [r.model_dump(by_alias=True) for r in records])

    def find(self, predicate: Callable[[Any], bool]) -> Optional[Any]:
        return next((r for r in self.get_all() if predicate(r)), None)

    def find_by_id(self, record_id: str) -> Optional[Any]:
        return self.find(lambda r: r.id == record_id)


class UserRepository(Collection):
    filename = USERS_FILE
    model = AdminUser

    def find_by_username(self, username: str) -> Optional[AdminUser]:
        username = username.lower()
        return self.find(lambda u: u.username.lower() == username)

    def add(self, user: AdminUser) -> AdminUser:
        with self.store.lock(self.path):
            users = self.get_all()
            users.append(user)
            self.save_all(users)
        return user

    def delete_by_id(self, user_id: str) -> bool:
        with self.store.lock(self.path):
            users = self.get_all()
            remaining = [u for u in users if u.id != user_id]
            if len(remaining) == len(users):
                return False
            self.save_all(remaining)
        return True


def sort_public(posts: List[ContentPost]) -> List[ContentPost]:
    """Pinned posts first, then newest first."""
    by_date = sorted(posts, key=lambda p: p.created_at, reverse=True)
    return sorted(by_date, key=lambda p: not p.pinned)


class ContentRepository(Collection):
    filename = CONTENT_FILE
    model = ContentPost

    def __init__(self, store: JsonStore, uploads=None):
        super().__init__(store)
        self.uploads = uploads

    def list_public(self, category: Optional[str] = None, query: Optional[str] = None) -> List[ContentPost]:
        posts = self.get_all()
        if category and category != "all":
            posts = [p for p in posts if p.category == category]
        if query:
            q = query.lower()
            posts = [
                p for p in posts
                if q in p.title.lower() or q in p.description.lower() or any(q in t.lower() for t in p.tags)
            ]
        return sort_public(posts)

    def categories(self) -> List[str]:
        seen = []
        for post in self.get_all():
            if post.category not in seen:
                seen.append(post.category)
        return seen

    def add(self, post: ContentPost) -> ContentPost:
        with self.store.lock(self.path):
            posts = self.get_all()
            posts.insert(0, post)
            self.save_all(posts)
        return post

    def update(self, post_id: str, changes: Dict[str, Any]) -> Optional[ContentPost]:
        """Merge ``changes`` (field name -> value, ``None`` = keep) into a post."""
        with self.store.lock(self.path):
            posts = self.get_all()
            for i, post in enumerate(posts):
                if post.id != post_id:
                    continue
                data = post.model_dump()
                data.update({k: v for k, v in changes.items() if v is not None})
                data["updated_at"] = utcnow()
                posts[i] = ContentPost.model_validate(data)
                self.save_all(posts)
                return posts[i]
        return None

    def delete_by_id(self, post_id: str) -> Optional[ContentPost]:
        """Remove a post and its uploaded files. Returns the removed post, or None."""
        with self.store.lock(self.path):
            posts = self.get_all()
            post = next((p for p in posts if p.id == post_id), None)
            if post is None:
                return None
            if self.uploads is not None:
                for f in post.files:
                    self.uploads.remove(f.path)
            self.save_all([p for p in posts if p.id != post_id])
        return post


class NotificationRepository(Collection):
    filename = NOTIFICATIONS_FILE
    model = Notification

    def add(self, type: str, title: str, message: str, content_id: Optional[str] = None) -> Notification:
        notification = Notification(
            id=new_id(),
            type=type,
            title=title,
            message=message,
            content_id=content_id,
            created_at=utcnow(),
        )
        with self.store.lock(self.path):
            notifications = self.get_all()
            notifications.insert(0, notification)
            self.save_all(notifications[:MAX_NOTIFICATIONS])
        return notification


def prune_expired(sessions: List[Session], now: datetime) -> List[Session]:
    return [s for s in sessions if s.expires_at > now]


class SessionRepository(Collection):
    filename = SESSIONS_FILE
    model = Session

    def get_all(self, now: Optional[datetime] = None) -> List[Session]:
        now = now or utcnow()
        with self.store.lock(self.path):
            sessions = self._load()
            valid = prune_expired(sessions, now)
            if len(valid) != len(sessions):
                logger.debug("Purged %d expired sessions", len(sessions) - len(valid))
                self.save_all(valid)
        return valid

    def add(self, session: Session) -> Session:
        with self.store.lock(self.path):
            sessions = self.get_all()
            sessions.append(session)
            self.save_all(sessions)
        return session

    def remove(self, predicate: Callable[[Session], bool]) -> int:
        with self.store.lock(self.path):
            sessions = self.get_all()
            remaining = [s for s in sessions if not predicate(s)]
            self.save_all(remaining)
        return len(sessions) - len(remaining)


DEFAULT_SETTINGS: Dict[str, Any] = SiteSettings.model_validate({
    "about": {
        "title": "Sobre nosotros",
        "features": [
            {"title": "Comunidad", "description": "Un espacio para aprender y compartir."},
            {"title": "Recursos", "description": "Material, herramientas y guias publicadas por el equipo."},
            {"title": "Soporte", "description": "Ayuda directa a traves de nuestros canales."},
        ],
    },
    "info": {
        "title": "Informacion",
        "description": "Todo el contenido se publica con fines educativos.",
    },
    "channels": {
        "title": "Canales",
        "description": "Unete a nuestros canales oficiales.",
        "links": [
            {"name": "Telegram", "url": "https://t.me/", "platform": "telegram"},
            {"name": "Discord", "url": "https://discord.gg/", "platform": "discord"},
        ],
    },
    "report": {
        "title": "Reportes",
        "description": "Encontraste un problema? Avisanos.",
        "buttonText": "Enviar reporte",
        "buttonUrl": "https://t.me/",
        "subtitle": "Respondemos lo antes posible.",
    },
    "rdpvps": {
        "title": "RDP / VPS",
        "description": "Servidores disponibles para la comunidad.",
        "links": [
            {"name": "RDP", "url": "#", "icon": "server"},
            {"name": "VPS", "url": "#", "icon": "terminal"},
        ],
    },
    "stats": {
        "items": [
            {"label": "Miembros", "value": 0},
            {"label": "Publicaciones", "value": 0},
        ],
    },
    "gallery": {"title": "Galeria", "images": []},
    "downloads": {"title": "Descargas", "description": "", "files": []},
}).to_json()


class SettingsRepository:
    filename = SETTINGS_FILE

    def __init__(self, store: JsonStore):
        self.store = store
        self.path = store.path(self.filename)

    def get(self) -> Dict[str, Any]:
        settings = self.store.read(self.path, DEFAULT_SETTINGS)
        if not isinstance(settings, dict):
            logger.warning("%s does not hold an object, using defaults", self.path)
            return copy.deepcopy(DEFAULT_SETTINGS)
        return settings

    def save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow merge: each top-level section in ``doc`` replaces the stored one."""
        with self.store.lock(self.path):
            merged = {**self.get(), **doc}
            self.store.write(self.path, merged)
        return merged


class Repositories:
    """All collections sharing one storage root."""

    def __init__(self, storage_dir: str, uploads=None):
        self.store = JsonStore(storage_dir)
        self.users = UserRepository(self.store)
        self.content = ContentRepository(self.store, uploads)
        self.notifications = NotificationRepository(self.store)
        self.sessions = SessionRepository(self.store)
        self.settings = SettingsRepository(self.store)
