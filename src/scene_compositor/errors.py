"""Export error taxonomy.

Fatal errors (``ConfigurationError``, ``RequiredAssetFetchError``,
``EncodingError``) propagate out of the pipeline. ``OptionalAssetFetchError``
and ``CleanupError`` are only ever logged.
"""

from __future__ import annotations


class ExportError(Exception):
    """Base class for all composition pipeline failures."""


class ConfigurationError(ExportError):
    """The request cannot produce a video (e.g. no scene has a ready clip)."""


class RequiredAssetFetchError(ExportError):
    def __init__(self, scene_id: int, reason: str):
        self.scene_id = scene_id
        self.reason = reason
        super().__init__(f"Failed to download video for scene {scene_id}: {reason}")


class OptionalAssetFetchError(ExportError):
    def __init__(self, asset: str, reason: str):
        self.asset = asset
        self.reason = reason
        super().__init__(f"Failed to download {asset}: {reason}")


class EncodingError(ExportError):
    """An FFmpeg concat or encode step failed."""


class EngineLoadError(EncodingError):
    """The FFmpeg engine could not be initialized."""


class CleanupError(ExportError):
    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to delete working file {name}: {reason}")
