"""
Release catalog writer

The only component that talks to the metadata store. Each artifact is
persisted in one transaction; afterwards only a version's changelog and
release date can change.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import settings
from ..core.exceptions import InvalidArgument, InvalidState, ReleaseNotFound
from ..models import GamePatch, Platform, ProductFile, ProductKind, ProductVersion
from ..schemas import AddonVersionArtifact, FullVersionArtifact, PatchArtifact, ProductFileSchema
from .assembler import AssembledBlob

logger = logging.getLogger(__name__)

VersionArtifact = Union[FullVersionArtifact, AddonVersionArtifact]


def is_archive(file_name: str, extensions: Sequence[str] = settings.ARCHIVE_EXTENSIONS) -> bool:
    """True when the name ends in a known archive extension (case-insensitive)"""
    lowered = file_name.lower()
    return any(lowered.endswith(ext) for ext in extensions)


def to_version_artifact(row: ProductVersion) -> VersionArtifact:
    fields = dict(
        id=row.id,
        product_id=row.product_id,
        platform=row.platform,
        version=row.version,
        storage_url=row.storage_url,
        file_size=row.file_size,
        hash=row.hash,
        changelog=row.changelog,
        release_date=row.release_date,
        upload_id=row.upload_id,
        files=[ProductFileSchema.model_validate(f) for f in row.files],
    )
    if row.product_kind == ProductKind.ADDON:
        return AddonVersionArtifact(base_game_id=row.base_game_id, **fields)
    return FullVersionArtifact(**fields)


def to_patch_artifact(row: GamePatch) -> PatchArtifact:
    return PatchArtifact(
        id=row.id,
        product_id=row.game_id,
        platform=row.platform,
        name=row.name,
        from_version=row.from_version,
        to_version=row.to_version,
        patch_url=row.patch_url,
        file_size=row.file_size,
        hash=row.hash,
        release_date=row.release_date,
        upload_id=row.upload_id,
    )


class ReleaseCatalogWriter:
    """Persists and reads release artifacts"""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        archive_extensions: Sequence[str] = settings.ARCHIVE_EXTENSIONS
    ):
        self.session_maker = session_maker
        self.archive_extensions = tuple(archive_extensions)

    async def persist_full_version(
        self,
        upload_id: str,
        game_id: str,
        platform: Platform,
        version: str,
        blob: AssembledBlob,
        final_file_name: str,
        changelog: Optional[str] = None,
        release_date: Optional[datetime] = None
    ) -> FullVersionArtifact:
        return await self._persist_version(
            ProductKind.GAME, upload_id, game_id, None, platform, version,
            blob, final_file_name, changelog, release_date
        )

    async def persist_addon_version(
        self,
        upload_id: str,
        addon_id: str,
        base_game_id: str,
        platform: Platform,
        version: str,
        blob: AssembledBlob,
        final_file_name: str,
        changelog: Optional[str] = None,
        release_date: Optional[datetime] = None
    ) -> AddonVersionArtifact:
        if not base_game_id:
            raise InvalidArgument("Addon versions require the base game id")
        return await self._persist_version(
            ProductKind.ADDON, upload_id, addon_id, base_game_id, platform, version,
            blob, final_file_name, changelog, release_date
        )

    async def persist_patch(
        self,
        upload_id: str,
        game_id: str,
        platform: Platform,
        name: str,
        from_version: str,
        to_version: str,
        blob: AssembledBlob,
        release_date: Optional[datetime] = None
    ) -> PatchArtifact:
        """A patch is one opaque delta blob: no file list is recorded"""
        row = GamePatch(
            game_id=game_id,
            platform=platform,
            name=name,
            from_version=from_version,
            to_version=to_version,
            patch_url=blob.storage_url,
            file_size=blob.size,
            hash=blob.hash,
            release_date=release_date or datetime.now(timezone.utc),
            upload_id=upload_id,
        )
        await self._insert(row, upload_id)

        logger.info(f"✅ Recorded patch {name} for game {game_id} ({platform.value}) {from_version} -> {to_version}")
        return to_patch_artifact(row)

    async def get_release_by_version(
        self,
        product_id: str,
        platform: Platform,
        version: str
    ) -> Optional[VersionArtifact]:
        """Most recently recorded full or addon version, or None"""
        async with self.session_maker() as db:
            result = await db.execute(
                select(ProductVersion)
                .where(
                    ProductVersion.product_id == product_id,
                    ProductVersion.platform == platform,
                    ProductVersion.version == version
                )
                .order_by(ProductVersion.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return to_version_artifact(row) if row else None

    async def get_release_by_id(self, release_id: str) -> VersionArtifact:
        async with self.session_maker() as db:
            row = await db.get(ProductVersion, release_id)
            if row is None:
                raise ReleaseNotFound(f"Release {release_id} not found")
            return to_version_artifact(row)

    async def get_patch_by_name(
        self,
        product_id: str,
        platform: Platform,
        name: str
    ) -> Optional[PatchArtifact]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(GamePatch)
                .where(
                    GamePatch.game_id == product_id,
                    GamePatch.platform == platform,
                    GamePatch.name == name
                )
                .order_by(GamePatch.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return to_patch_artifact(row) if row else None

    async def update_version_metadata(
        self,
        release_id: str,
        changelog: Optional[str] = None,
        release_date: Optional[datetime] = None
    ) -> VersionArtifact:
        """
        Edit changelog and/or release date of a published version.

        Blob fields (storage_url, hash, file_size) are never rewritten.
        """
        if changelog is None and release_date is None:
            raise InvalidArgument("Nothing to update: provide changelog or release_date")

        async with self.session_maker() as db:
            async with db.begin():
                row = await db.get(ProductVersion, release_id)
                if row is None:
                    raise ReleaseNotFound(f"Release {release_id} not found")
                if changelog is not None:
                    row.changelog = changelog
                if release_date is not None:
                    row.release_date = release_date
            logger.info(f"Updated metadata of release {release_id}")
            return to_version_artifact(row)

    async def _persist_version(
        self,
        kind: ProductKind,
        upload_id: str,
        product_id: str,
        base_game_id: Optional[str],
        platform: Platform,
        version: str,
        blob: AssembledBlob,
        final_file_name: str,
        changelog: Optional[str],
        release_date: Optional[datetime]
    ) -> VersionArtifact:
        row = ProductVersion(
            product_id=product_id,
            product_kind=kind,
            base_game_id=base_game_id,
            platform=platform,
            version=version,
            storage_url=blob.storage_url,
            file_size=blob.size,
            hash=blob.hash,
            changelog=changelog or "",
            release_date=release_date or datetime.now(timezone.utc),
            upload_id=upload_id,
        )
        # The uploaded blob is the version's single logical file
        row.files = [
            ProductFile(
                position=0,
                file_name=final_file_name,
                file_path=blob.blob_key,
                file_size=blob.size,
                hash=blob.hash,
                is_archive=is_archive(final_file_name, self.archive_extensions),
                storage_url=blob.storage_url,
            )
        ]
        await self._insert(row, upload_id)

        logger.info(f"✅ Recorded {kind.value} version {product_id} {platform.value} v{version} (upload {upload_id})")
        return to_version_artifact(row)

    async def _insert(self, row: Union[ProductVersion, GamePatch], upload_id: str) -> None:
        async with self.session_maker() as db:
            try:
                async with db.begin():
                    db.add(row)
            except IntegrityError as e:
                logger.error(f"❌ Release for upload {upload_id} already recorded: {e}")
                raise InvalidState(f"A release has already been recorded for upload {upload_id}") from e
