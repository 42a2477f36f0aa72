"""
Release artifact schemas (the pipeline's output contract)

A release is a tagged union on ``kind``: a Patch never carries a file list,
full and addon versions always have a platform+version identity.
"""
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..models.enums import Platform


class ProductFileSchema(BaseModel):
    """One logical file of a full or addon version"""
    file_name: str
    file_path: str  # Object key in the bucket
    file_size: int
    hash: str  # SHA-256 hex
    is_archive: bool  # Informational only, nothing is extracted server-side
    storage_url: str

    class Config:
        from_attributes = True
        frozen = True


class FullVersionArtifact(BaseModel):
    """Full build of a base game"""
    kind: Literal["full_version"] = "full_version"
    id: str
    product_id: str  # Game id
    platform: Platform
    version: str
    storage_url: str
    file_size: int
    hash: str
    changelog: str
    release_date: datetime
    upload_id: str
    files: list[ProductFileSchema]

    class Config:
        frozen = True


class AddonVersionArtifact(BaseModel):
    """Full build of an addon, always tied to its base game"""
    kind: Literal["addon_version"] = "addon_version"
    id: str
    product_id: str  # Addon id
    base_game_id: str
    platform: Platform
    version: str
    storage_url: str
    file_size: int
    hash: str
    changelog: str
    release_date: datetime
    upload_id: str
    files: list[ProductFileSchema]

    class Config:
        frozen = True


class PatchArtifact(BaseModel):
    """Delta blob between two published versions"""
    kind: Literal["patch"] = "patch"
    id: str
    product_id: str  # Game id
    platform: Platform
    name: str
    from_version: str
    to_version: str
    patch_url: str
    file_size: int
    hash: str
    release_date: datetime
    upload_id: str

    class Config:
        frozen = True


ReleaseArtifact = Annotated[
    Union[FullVersionArtifact, AddonVersionArtifact, PatchArtifact],
    Field(discriminator="kind")
]


class UpdateVersionMetadataRequest(BaseModel):
    """Editable fields of a published version. Blob fields are not editable."""
    changelog: Optional[str] = None
    release_date: Optional[datetime] = None


class DownloadUrlResponse(BaseModel):
    """Presigned GET url for a published version blob"""
    release_id: str
    url: str
    expires_in: int
