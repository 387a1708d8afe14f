"""Database models for Icon Vault."""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

STATUS_PENDING = "PENDING"
STATUS_PUBLISHED = "PUBLISHED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IconTagLink(SQLModel, table=True):
    """Link table for many-to-many relationship between icons and tags."""
    icon_id: Optional[int] = Field(
        default=None, foreign_key="icon.id", primary_key=True
    )
    tag_id: Optional[int] = Field(default=None, foreign_key="tag.id", primary_key=True)


class Tag(SQLModel, table=True):
    """Tag assigned to icons by post-upload analysis."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    usage_count: int = 0


class Icon(SQLModel, table=True):
    """Icon record pointing at a file in sharded storage."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    file_name: str
    description: Optional[str] = None
    content_hash: str = Field(index=True, unique=True, description="MD5 of file content")
    shard_id: int
    size: int = 0
    status: str = Field(default=STATUS_PENDING, index=True)
    ai_category: Optional[str] = None
    view_count: int = 0
    download_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def public_path(self) -> str:
        """Path relative to the icons root, as served under /icons/."""
        return f"shard-{self.shard_id}/{self.file_name}"
