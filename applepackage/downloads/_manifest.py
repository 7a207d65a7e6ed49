#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Module containing the package manifest, the persisted record of a package acquisition."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final, Self

from .._models import Account, Sinf, Software

if TYPE_CHECKING:
    from pathlib import Path

_VERSION_TOKEN: Final = re.compile(r"(\d+)")


def compare_versions(lhs: str, rhs: str) -> int:
    """
    Compare two version strings, treating runs of digits as numbers.

    >>> compare_versions("1.10", "1.9")
    1

    >>> compare_versions("2.0", "2.0")
    0

    >>> compare_versions("1.2", "1.2.1")
    -1
    """
    lhs_tokens = [token for token in _VERSION_TOKEN.split(lhs) if token]
    rhs_tokens = [token for token in _VERSION_TOKEN.split(rhs) if token]

    for lhs_token, rhs_token in zip(lhs_tokens, rhs_tokens, strict=False):
        if lhs_token.isdigit() and rhs_token.isdigit():
            lhs_value: int | str = int(lhs_token)
            rhs_value: int | str = int(rhs_token)
        else:
            lhs_value, rhs_value = lhs_token, rhs_token

        if lhs_value != rhs_value:
            return 1 if lhs_value > rhs_value else -1  # type: ignore[operator]

    return (len(lhs_tokens) > len(rhs_tokens)) - (len(lhs_tokens) < len(rhs_tokens))


class DownloadStatus(StrEnum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class DownloadState:
    status: DownloadStatus = DownloadStatus.PENDING
    percent: float = 0.0
    """Progress in the range `[0, 1]`."""
    speed: str = ""
    """Human-readable transfer speed, without the `/s` suffix."""
    error: str | None = None

    def to_dict(self: Self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "percent": self.percent,
            "speed": self.speed,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls: type[Self], data: dict[str, Any]) -> Self:
        return cls(
            status=DownloadStatus(data.get("status", DownloadStatus.PENDING)),
            percent=float(data.get("percent", 0.0)),
            speed=data.get("speed", ""),
            error=data.get("error"),
        )


class UpdateStatusKind(StrEnum):
    IDLE = "idle"
    CHECKING = "checking"
    UP_TO_DATE = "upToDate"
    UPDATE_AVAILABLE = "updateAvailable"
    FAILED = "failed"


@dataclass(frozen=True)
class UpdateStatus:
    """Result of the latest update check of a completed package."""

    kind: UpdateStatusKind = UpdateStatusKind.IDLE
    version: str | None = None
    """The latest published version, for `upToDate` and `updateAvailable`."""
    message: str | None = None
    """The failure reason, for `failed`."""

    @classmethod
    def idle(cls: type[Self]) -> Self:
        return cls()

    @classmethod
    def checking(cls: type[Self]) -> Self:
        return cls(UpdateStatusKind.CHECKING)

    @classmethod
    def up_to_date(cls: type[Self], latest: str) -> Self:
        return cls(UpdateStatusKind.UP_TO_DATE, version=latest)

    @classmethod
    def update_available(cls: type[Self], latest: str) -> Self:
        return cls(UpdateStatusKind.UPDATE_AVAILABLE, version=latest)

    @classmethod
    def failed(cls: type[Self], message: str) -> Self:
        return cls(UpdateStatusKind.FAILED, message=message)

    @property
    def allows_refresh(self: Self) -> bool:
        """Whether a non-forced update check may start from this status."""
        return self.kind in {UpdateStatusKind.IDLE, UpdateStatusKind.FAILED}

    def to_dict(self: Self) -> dict[str, Any]:
        data: dict[str, Any] = {"caseName": str(self.kind)}
        if self.kind in {UpdateStatusKind.UP_TO_DATE, UpdateStatusKind.UPDATE_AVAILABLE}:
            data["version"] = self.version
        elif self.kind == UpdateStatusKind.FAILED:
            data["message"] = self.message

        return data

    @classmethod
    def from_dict(cls: type[Self], data: dict[str, Any]) -> Self:
        """Decode an update status. Unknown or incomplete records decode to `idle`."""
        match data.get("caseName"):
            case UpdateStatusKind.CHECKING:
                return cls.checking()
            case UpdateStatusKind.UP_TO_DATE if isinstance(data.get("version"), str):
                return cls.up_to_date(data["version"])
            case UpdateStatusKind.UPDATE_AVAILABLE if isinstance(data.get("version"), str):
                return cls.update_available(data["version"])
            case UpdateStatusKind.FAILED if isinstance(data.get("message"), str):
                return cls.failed(data["message"])
            case _:
                return cls.idle()


@dataclass
class PackageManifest:
    """
    The record of a single package acquisition.

    Manifests are owned by a `ManifestRegistry`, which performs every state change.
    The update status stays `idle` unless the download has completed.
    """

    account: Account
    package: Software
    url: str
    signatures: list[Sinf]
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    creation: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    state: DownloadState = field(default_factory=DownloadState)
    update_status: UpdateStatus = field(default_factory=UpdateStatus.idle)

    @property
    def completed(self: Self) -> bool:
        return self.state.status == DownloadStatus.COMPLETED

    @property
    def percent(self: Self) -> float:
        return self.state.percent

    @property
    def speed(self: Self) -> str:
        return self.state.speed

    def target_location(self: Self, packages_dir: Path) -> Path:
        """The path the package archive is written to."""
        return packages_dir / self.package.bundle_id / self.package.version / f"{self.id}.ipa"

    @property
    def hint(self: Self) -> str:
        """A short, human-readable description of the manifest's state."""
        if self.state.error:
            return self.state.error

        match self.state.status:
            case DownloadStatus.PENDING:
                return "Pending..."
            case DownloadStatus.DOWNLOADING:
                progress = f"{int(self.state.percent * 100)}%"
                return f"{progress} {self.state.speed}/s" if self.state.speed else progress
            case DownloadStatus.PAUSED:
                return "Paused"
            case DownloadStatus.FAILED:
                return "Failed"
            case DownloadStatus.COMPLETED:
                return self._completion_hint

    @property
    def _completion_hint(self: Self) -> str:
        match self.update_status.kind:
            case UpdateStatusKind.CHECKING:
                return "Checking for updates..."
            case UpdateStatusKind.UP_TO_DATE:
                return f"Up to date ({self.update_status.version})"
            case UpdateStatusKind.UPDATE_AVAILABLE:
                return f"Update available: {self.update_status.version}"
            case UpdateStatusKind.FAILED:
                return "Update check failed"
            case _:
                return "Completed"

    def to_dict(self: Self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "account": self.account.to_dict(),
            "package": self.package.to_dict(),
            "url": self.url,
            "signatures": [signature.to_dict() for signature in self.signatures],
            "creation": self.creation.isoformat(),
            "runtime": self.state.to_dict(),
            "updateStatus": self.update_status.to_dict(),
        }

    @classmethod
    def from_dict(cls: type[Self], data: dict[str, Any]) -> Self:
        state = DownloadState.from_dict(data.get("runtime", {}))

        update_status = UpdateStatus.from_dict(data.get("updateStatus") or {})
        if state.status != DownloadStatus.COMPLETED:
            update_status = UpdateStatus.idle()

        return cls(
            id=uuid.UUID(data["id"]),
            account=Account.from_dict(data["account"]),
            package=Software.from_dict(data["package"]),
            url=data["url"],
            signatures=[Sinf.from_dict(signature) for signature in data.get("signatures", [])],
            creation=datetime.fromisoformat(data["creation"]),
            state=state,
            update_status=update_status,
        )
