#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Package tracking package acquisitions from download ticket to completed archive."""

from ._actions import ActionLabel, DownloadAction, action_label, available_actions
from ._manifest import (
    DownloadState,
    DownloadStatus,
    PackageManifest,
    UpdateStatus,
    UpdateStatusKind,
    compare_versions,
)
from ._registry import DownloadExecutor, ManifestEvent, ManifestRegistry

__all__ = [
    "ActionLabel",
    "DownloadAction",
    "DownloadExecutor",
    "DownloadState",
    "DownloadStatus",
    "ManifestEvent",
    "ManifestRegistry",
    "PackageManifest",
    "UpdateStatus",
    "UpdateStatusKind",
    "action_label",
    "available_actions",
    "compare_versions",
]
