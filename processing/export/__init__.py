"""Archive writers for export output."""

from processing.export.zip_stream import ArchiveConfig, ArchiveStream, ArchiveStreamer

__all__ = ["ArchiveConfig", "ArchiveStream", "ArchiveStreamer"]
