"""
Zip archive streaming for image downloads and exports.
"""

from .builder import ArchiveError, ZipStreamBuilder

__all__ = ["ArchiveError", "ZipStreamBuilder"]
