"""
Enumerations shared by the ORM models and API schemas
"""
from enum import Enum


class Platform(str, Enum):
    """Target platform of a release build"""
    WINDOWS = "windows"
    MAC = "mac"
    LINUX = "linux"


class FileType(str, Enum):
    """
    Kind of release an upload is completed into.

    Attributes:
        GAME_VERSION: full build of a base game
        GAME_ADDON: full build of an addon (requires the base game id)
        GAME_PATCH: one opaque delta blob between two published versions
    """
    GAME_VERSION = "game_version"
    GAME_ADDON = "game_addon"
    GAME_PATCH = "game_patch"


class ProductKind(str, Enum):
    """Discriminates base-game and addon rows in product_versions"""
    GAME = "game"
    ADDON = "addon"
