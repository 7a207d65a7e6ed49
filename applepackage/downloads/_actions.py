#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from ._manifest import DownloadStatus, UpdateStatusKind

if TYPE_CHECKING:
    from ._manifest import PackageManifest


class DownloadAction(StrEnum):
    PAUSE = "pause"
    RESUME = "resume"
    RETRY = "retry"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ActionLabel:
    title: str
    icon: str
    destructive: bool = False


_ACTION_LABELS: Final = {
    DownloadAction.PAUSE: ActionLabel("Pause", "pause.fill"),
    DownloadAction.RESUME: ActionLabel("Resume", "play.fill"),
    DownloadAction.RETRY: ActionLabel("Retry", "arrow.clockwise"),
    DownloadAction.UPDATE: ActionLabel("Update", "arrow.down.circle"),
    DownloadAction.DELETE: ActionLabel("Delete", "trash", destructive=True),
}


def available_actions(manifest: PackageManifest) -> list[DownloadAction]:
    """List the actions that apply to a manifest in its current state. Deletion always applies."""
    actions: list[DownloadAction] = []

    match manifest.state.status:
        case DownloadStatus.DOWNLOADING:
            actions.append(DownloadAction.PAUSE)
        case DownloadStatus.PAUSED:
            actions.append(DownloadAction.RESUME)
        case DownloadStatus.FAILED:
            actions.append(DownloadAction.RETRY)
        case DownloadStatus.COMPLETED if manifest.update_status.kind == UpdateStatusKind.UPDATE_AVAILABLE:
            actions.append(DownloadAction.UPDATE)

    actions.append(DownloadAction.DELETE)
    return actions


def action_label(action: DownloadAction) -> ActionLabel:
    return _ACTION_LABELS[action]
