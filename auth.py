import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from passlib.context import CryptContext

from config import Settings
from database import Repositories, new_id
from errors import ConflictError, InvalidCredentials, ValidationError
from schemas import AdminUser, Session, utcnow

logger = logging.getLogger(__name__)

ROLES = ("admin", "editor")


class AuthService:
    """Password checks, session lifecycle and user accounts."""

    def __init__(self, repos: Repositories, settings: Settings):
        self.repos = repos
        self.settings = settings
        self.pwd_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds
        )
        self._dummy_hash: Optional[str] = None

    # -----------------
    # Passwords
    # -----------------
    def hash_password(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify_password(self, password: str, hashed: str) -> bool:
        try:
            return self.pwd_context.verify(password, hashed)
        except ValueError:
            # unrecognised or malformed stored hash
            return False

    def verify_credentials(self, username: str, password: str) -> AdminUser:
        user = self.repos.users.find_by_username(username)
        if user is None:
            # keep the timing of unknown usernames close to a real check
            if self._dummy_hash is None:
                self._dummy_hash = self.hash_password(secrets.token_hex(8))
            self.verify_password(password, self._dummy_hash)
            raise InvalidCredentials()
        if not self.verify_password(password, user.password_hash):
            raise InvalidCredentials()
        return user

    # -----------------
    # Sessions
    # -----------------
    def create_session(self, user: AdminUser, now: Optional[datetime] = None) -> Session:
        now = now or utcnow()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user.id,
            username=user.username,
            role=user.role,
            expires_at=now + timedelta(hours=self.settings.session_ttl_hours),
        )
        return self.repos.sessions.add(session)

    def find_valid_session(self, token: Optional[str], now: Optional[datetime] = None) -> Optional[Session]:
        if not token:
            return None
        sessions = self.repos.sessions.get_all(now=now)
        return next((s for s in sessions if secrets.compare_digest(s.token.encode(), token.encode())), None)

    def delete_session(self, token: str) -> None:
        self.repos.sessions.remove(lambda s: s.token == token)

    def delete_user_sessions(self, user_id: str) -> int:
        return self.repos.sessions.remove(lambda s: s.user_id == user_id)

    # -----------------
    # Accounts
    # -----------------
    def create_user(self, username: Optional[str], password: Optional[str], role: Optional[str] = None) -> AdminUser:
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Usuario y contrasena requeridos")
        role = role or "editor"
        if role not in ROLES:
            raise ValidationError("Rol invalido")
        with self.repos.store.lock(self.repos.users.path):
            if self.repos.users.find_by_username(username):
                raise ConflictError("El usuario ya existe")
            user = AdminUser(
                id=new_id(),
                username=username,
                password_hash=self.hash_password(password),
                role=role,
                created_at=utcnow(),
            )
            self.repos.users.add(user)
        logger.info("Created %s account %s", role, username)
        return user

    def delete_user(self, acting: Session, user_id: Optional[str]) -> bool:
        if not user_id:
            raise ValidationError("ID de usuario requerido")
        if user_id == acting.user_id:
            raise ValidationError("No puedes eliminarte a ti mismo")
        removed = self.repos.users.delete_by_id(user_id)
        if removed:
            self.delete_user_sessions(user_id)
            logger.info("User %s deleted by %s", user_id, acting.username)
        return removed

    def ensure_default_admin(self) -> Optional[AdminUser]:
        """Seed an administrator when there are no accounts at all."""
        path = self.repos.users.path
        with self.repos.store.lock(path):
            existing = self.repos.store.read_result(path, [])
            if existing.recovered:
                logger.error("%s is unreadable; not seeding a default admin over it", path)
                return None
            if existing.value != []:
                return None
            username = self.settings.default_admin_username
            password = self.settings.default_admin_password
            if not password and self.settings.allow_default_credentials:
                password = username
                logger.warning(
                    "Seeded default admin %r with the well-known default password; change it now", username
                )
            elif not password:
                password = secrets.token_urlsafe(12)
                logger.warning("Seeded default admin %r with one-time password: %s", username, password)
            else:
                logger.info("Seeded default admin %r from DEFAULT_ADMIN_PASSWORD", username)
            user = AdminUser(
                id=new_id(),
                username=username,
                password_hash=self.hash_password(password),
                role="admin",
                created_at=utcnow(),
            )
            self.repos.users.save_all([user])
        return user
