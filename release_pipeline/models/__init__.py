"""Models module exports"""
from .database import Base, ProductVersion, ProductFile, GamePatch
from .enums import Platform, FileType, ProductKind

__all__ = ["Base", "ProductVersion", "ProductFile", "GamePatch", "Platform", "FileType", "ProductKind"]
