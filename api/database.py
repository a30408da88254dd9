"""
Metadata store: users, refresh tokens and video records.

Tables are plain SQLAlchemy core; queries run through the async `databases`
driver (SQLite by default, PostgreSQL via TUBELY_DATABASE_URL).
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

import sqlalchemy as sa
from databases import Database

from api.common import ensure_utc
from api.db_retry import with_db_retry

metadata = sa.MetaData()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("email", sa.String(255), unique=True, nullable=False),
    sa.Column("hashed_password", sa.String(255), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=_utcnow),
)

refresh_tokens = sa.Table(
    "refresh_tokens",
    metadata,
    sa.Column("token", sa.String(128), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),  # NULL = still valid
    sa.Index("ix_refresh_tokens_user_id", "user_id"),
)

videos = sa.Table(
    "videos",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("description", sa.Text, nullable=True),
    # Plain URL to a locally served asset
    sa.Column("thumbnail_url", sa.Text, nullable=True),
    # "<bucket>,<key>" composite reference, signed on every read (see api.storage)
    sa.Column("video_url", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=_utcnow),
    sa.Index("ix_videos_user_id", "user_id"),
    sa.Index("ix_videos_created_at", "created_at"),
)


def create_tables(database_url: str) -> None:
    """
    Create database tables directly using SQLAlchemy metadata.
    This creates all tables if they don't exist.
    """
    engine = sa.create_engine(database_url)
    metadata.create_all(engine)
    engine.dispose()


def _row_to_dict(row) -> Optional[dict]:
    if row is None:
        return None
    data = dict(row._mapping) if hasattr(row, "_mapping") else dict(row)
    for column in ("created_at", "updated_at", "expires_at", "revoked_at"):
        if column in data:
            data[column] = ensure_utc(data[column])
    return data


class MetadataStore:
    """CRUD accessors over the users, refresh_tokens and videos tables."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.database = Database(database_url)

    async def connect(self) -> None:
        await self.database.connect()

    async def disconnect(self) -> None:
        await self.database.disconnect()

    async def ping(self) -> None:
        await self.database.fetch_one("SELECT 1")

    # ============ Users ============

    @with_db_retry()
    async def create_user(self, email: str, hashed_password: str) -> dict:
        now = _utcnow()
        user = {
            "id": str(uuid.uuid4()),
            "email": email,
            "hashed_password": hashed_password,
            "created_at": now,
            "updated_at": now,
        }
        await self.database.execute(users.insert().values(**user))
        return user

    @with_db_retry()
    async def get_user_by_email(self, email: str) -> Optional[dict]:
        row = await self.database.fetch_one(users.select().where(users.c.email == email))
        return _row_to_dict(row)

    @with_db_retry()
    async def get_user(self, user_id: str) -> Optional[dict]:
        row = await self.database.fetch_one(users.select().where(users.c.id == user_id))
        return _row_to_dict(row)

    # ============ Refresh tokens ============

    @with_db_retry()
    async def create_refresh_token(self, token: str, user_id: str, expires_at: datetime) -> None:
        now = _utcnow()
        await self.database.execute(
            refresh_tokens.insert().values(
                token=token,
                user_id=user_id,
                created_at=now,
                updated_at=now,
                expires_at=expires_at,
            )
        )

    @with_db_retry()
    async def get_user_for_refresh_token(self, token: str) -> Optional[dict]:
        """Return the owning user if the token exists, is not revoked and has not expired."""
        row = await self.database.fetch_one(
            refresh_tokens.select().where(refresh_tokens.c.token == token).where(refresh_tokens.c.revoked_at.is_(None))
        )
        record = _row_to_dict(row)
        if record is None or record["expires_at"] <= _utcnow():
            return None
        return await self.get_user(record["user_id"])

    @with_db_retry()
    async def revoke_refresh_token(self, token: str) -> None:
        now = _utcnow()
        await self.database.execute(
            refresh_tokens.update()
            .where(refresh_tokens.c.token == token)
            .where(refresh_tokens.c.revoked_at.is_(None))
            .values(revoked_at=now, updated_at=now)
        )

    # ============ Videos ============

    @with_db_retry()
    async def create_video(self, user_id: str, title: str, description: Optional[str]) -> dict:
        now = _utcnow()
        video = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "title": title,
            "description": description,
            "thumbnail_url": None,
            "video_url": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.database.execute(videos.insert().values(**video))
        return video

    @with_db_retry()
    async def get_video(self, video_id: str) -> Optional[dict]:
        row = await self.database.fetch_one(videos.select().where(videos.c.id == video_id))
        return _row_to_dict(row)

    @with_db_retry()
    async def list_videos(self, user_id: str) -> List[dict]:
        rows = await self.database.fetch_all(
            videos.select().where(videos.c.user_id == user_id).order_by(videos.c.created_at.desc())
        )
        return [_row_to_dict(row) for row in rows]

    @with_db_retry()
    async def update_video(self, video: dict) -> None:
        """Persist the mutable fields of a video record and bump updated_at."""
        now = _utcnow()
        await self.database.execute(
            videos.update()
            .where(videos.c.id == video["id"])
            .values(
                title=video["title"],
                description=video.get("description"),
                thumbnail_url=video.get("thumbnail_url"),
                video_url=video.get("video_url"),
                updated_at=now,
            )
        )
        video["updated_at"] = now

    @with_db_retry()
    async def delete_video(self, video_id: str) -> None:
        await self.database.execute(videos.delete().where(videos.c.id == video_id))

    async def reset(self) -> None:
        """Delete every row; dependents first."""
        async with self.database.transaction():
            await self.database.execute(refresh_tokens.delete())
            await self.database.execute(videos.delete())
            await self.database.execute(users.delete())
