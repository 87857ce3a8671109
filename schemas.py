"""
Record schemas for the community site

Each Pydantic model represents one JSON collection on disk.
Field names are snake_case in Python and camelCase in the stored JSON
(``passwordHash``, ``createdAt`` ...), so records are always dumped with
``by_alias=True``.

Collections:
- users.json          -> AdminUser
- sessions.json       -> Session
- content.json        -> ContentPost (with embedded ContentFile)
- notifications.json  -> Notification
- settings.json       -> SiteSettings (singleton document)
"""
from datetime import datetime, timezone
from typing import Annotated, Optional, List, Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

Role = Literal["admin", "editor"]
FileType = Literal["image", "audio", "video", "document", "other"]
NotificationType = Literal["new_content", "update_content", "delete_content"]


def utcnow() -> datetime:
    now = datetime.now(timezone.utc)
    # stored timestamps keep millisecond precision
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# Timezone-aware instant, written to JSON as "2024-05-01T12:00:00.000Z"
Timestamp = Annotated[AwareDatetime, PlainSerializer(isoformat, return_type=str)]


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class AdminUser(Record):
    """
    Users collection schema
    Roles:
    - admin: full control, including user management
    - editor: manages content, uploads and site sections
    """
    id: str
    username: str
    password_hash: str = Field(..., description="bcrypt hash")
    role: Role = "editor"
    created_at: Timestamp

    def summary(self) -> dict:
        data = self.to_json()
        return {key: data[key] for key in ("id", "username", "role", "createdAt")}


class Session(Record):
    """Login session; role and username are copied from the user at login time"""
    token: str
    user_id: str
    username: str
    role: str
    expires_at: Timestamp


class ContentFile(Record):
    id: str
    name: str
    original_name: str
    type: FileType = "other"
    mime_type: str = "application/octet-stream"
    size: int = 0
    path: str


class ContentPost(Record):
    id: str
    title: str
    description: str
    category: str = "General"
    author: str
    created_at: Timestamp
    updated_at: Timestamp
    files: List[ContentFile] = []
    pinned: bool = False
    tags: List[str] = []


class Notification(Record):
    id: str
    type: NotificationType
    title: str
    message: str
    content_id: Optional[str] = None
    created_at: Timestamp


# -----------------
# Site sections
# -----------------
class Feature(BaseModel):
    title: str
    description: str = ""


class Link(BaseModel):
    name: str
    url: str
    platform: Optional[str] = None
    icon: Optional[str] = None


class Stat(BaseModel):
    label: str
    value: int = 0


class GalleryImage(BaseModel):
    url: str
    alt: str = ""


class DownloadItem(BaseModel):
    name: str
    url: str
    type: str = ""
    description: str = ""


class AboutSection(Record):
    title: str
    features: List[Feature] = []


class InfoSection(Record):
    title: str
    description: str = ""


class ChannelsSection(Record):
    title: str
    description: str = ""
    links: List[Link] = []


class ReportSection(Record):
    title: str
    description: str = ""
    button_text: str = ""
    button_url: str = ""
    subtitle: str = ""


class RdpVpsSection(Record):
    title: str
    description: str = ""
    links: List[Link] = []


class StatsSection(Record):
    items: List[Stat] = []


class GallerySection(Record):
    title: str
    images: List[GalleryImage] = []


class DownloadsSection(Record):
    title: str
    description: str = ""
    files: List[DownloadItem] = []


class SiteSettings(Record):
    """Singleton document; top-level keys are the site sections"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    about: AboutSection
    info: InfoSection
    channels: ChannelsSection
    report: ReportSection
    rdpvps: RdpVpsSection
    stats: StatsSection
    gallery: GallerySection
    downloads: DownloadsSection


SECTION_KEYS = tuple(SiteSettings.model_fields.keys())
