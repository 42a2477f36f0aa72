"""
Database models for the release catalog

Uses UUID strings for ids (no auto-increment hotspots).
Rows are written once by the catalog writer; only changelog and release date
of a version may be edited afterwards.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, BigInteger, Boolean, DateTime, Text, ForeignKey, Index, Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .enums import Platform, ProductKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class ProductVersion(Base):
    """
    Full build of a game or addon for one platform.

    Design:
    - Base games and addons share the table (product_kind discriminates)
    - Addon rows always carry base_game_id
    - upload_id is unique: one upload session yields at most one release
    - Re-uploading the same (product, platform, version) adds a new row
    """
    __tablename__ = "product_versions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_kind: Mapped[ProductKind] = mapped_column(
        SAEnum(ProductKind, native_enum=False, length=16),
        nullable=False
    )
    base_game_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    platform: Mapped[Platform] = mapped_column(
        SAEnum(Platform, native_enum=False, length=16),
        nullable=False
    )
    version: Mapped[str] = mapped_column(String(32), nullable=False)

    # Published blob (immutable)
    storage_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Editable metadata
    changelog: Mapped[str] = mapped_column(Text, default="", nullable=False)
    release_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    upload_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    files: Mapped[list["ProductFile"]] = relationship(
        back_populates="product_version",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductFile.position"
    )

    __table_args__ = (
        Index('idx_product_platform_version', 'product_id', 'platform', 'version'),
    )

    def __repr__(self):
        return f"<ProductVersion {self.product_kind.value} {self.product_id} {self.platform.value} v{self.version}>"


class ProductFile(Base):
    """One logical file of a full or addon version"""
    __tablename__ = "product_files"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    product_version_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey('product_versions.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # informational, no extraction
    storage_url: Mapped[str] = mapped_column(String(1024), nullable=False)

    product_version: Mapped[ProductVersion] = relationship(back_populates="files")

    def __repr__(self):
        return f"<ProductFile {self.file_name} ({self.file_size} bytes)>"


class GamePatch(Base):
    """
    Delta between two published versions of a game.

    from_version/to_version are plain strings, not foreign keys: the versions
    they name may not exist as rows.
    """
    __tablename__ = "game_patches"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    game_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    platform: Mapped[Platform] = mapped_column(
        SAEnum(Platform, native_enum=False, length=16),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    from_version: Mapped[str] = mapped_column(String(32), nullable=False)
    to_version: Mapped[str] = mapped_column(String(32), nullable=False)
    patch_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    release_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    upload_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_patch_game_platform_name', 'game_id', 'platform', 'name'),
    )

    def __repr__(self):
        return f"<GamePatch {self.game_id} {self.platform.value} {self.from_version}->{self.to_version}>"
