"""
Chunked upload and release-assembly service for game and addon binaries
"""

__version__ = "1.0.0"
