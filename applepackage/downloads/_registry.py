#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Module containing the registry that owns the package manifests and drives their lifecycle."""

from __future__ import annotations

import asyncio
from enum import Enum, auto
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Protocol, Self

from .._config import Configuration, country_code
from .._util.event_listener import EventListener
from ..commands import lookup
from ._actions import DownloadAction, available_actions
from ._manifest import (
    DownloadState,
    DownloadStatus,
    PackageManifest,
    UpdateStatus,
    UpdateStatusKind,
    compare_versions,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable, Iterable

    from .._models import Account, DownloadOutput, Software

    LookupFunction = Callable[[str, str], Awaitable[Software]]

REGION_UNAVAILABLE_MESSAGE: Final = "Unable to determine account region."
UPDATE_CHECK_FAILED_MESSAGE: Final = "Update check failed."

ALLOWED_TRANSITIONS: Final[dict[DownloadStatus, set[DownloadStatus]]] = {
    DownloadStatus.PENDING: {DownloadStatus.DOWNLOADING, DownloadStatus.FAILED},
    DownloadStatus.DOWNLOADING: {DownloadStatus.PAUSED, DownloadStatus.COMPLETED, DownloadStatus.FAILED},
    DownloadStatus.PAUSED: {DownloadStatus.DOWNLOADING, DownloadStatus.FAILED},
    DownloadStatus.FAILED: {DownloadStatus.PENDING, DownloadStatus.DOWNLOADING},
    DownloadStatus.COMPLETED: {DownloadStatus.PENDING},
}

logger = getLogger(__name__)


class ManifestEvent(Enum):
    ADDED = auto()
    REMOVED = auto()
    STATE_CHANGED = auto()
    UPDATE_STATUS_CHANGED = auto()
    UPDATE_REQUESTED = auto()


class DownloadExecutor(Protocol):
    """Transfers package archives on behalf of a `ManifestRegistry`."""

    async def start(self: Self, manifest: PackageManifest, destination: Path) -> None: ...

    async def suspend(self: Self, manifest: PackageManifest) -> None: ...

    async def cancel(self: Self, manifest: PackageManifest) -> None: ...


def _prune_empty_parents(path: Path, root: Path) -> None:
    """Remove empty directories from `path` upwards, stopping before `root`."""
    root = root.resolve()
    directory = path.resolve()

    while directory != root and root in directory.parents:
        if not directory.is_dir() or any(directory.iterdir()):
            return

        directory.rmdir()
        directory = directory.parent


class ManifestRegistry(EventListener):
    """
    Owns the package manifests and performs every change to them.

    Listeners are registered per `ManifestEvent` and receive the affected manifest.
    Update checks run as background tasks, one at most per manifest.
    """

    def __init__(
        self: Self,
        packages_dir: Path | str,
        *,
        executor: DownloadExecutor | None = None,
        configuration: Configuration | None = None,
        lookup_function: LookupFunction | None = None,
    ) -> None:
        super().__init__()

        self.packages_dir = Path(packages_dir)
        self.executor = executor
        self.configuration = configuration or Configuration()

        self._lookup = lookup_function or self._lookup_latest
        self._manifests: dict[uuid.UUID, PackageManifest] = {}
        self._update_tasks: dict[uuid.UUID, asyncio.Task[None]] = {}

    async def _lookup_latest(self: Self, bundle_id: str, region: str) -> Software:
        return await lookup(bundle_id, region, configuration=self.configuration)

    @property
    def manifests(self: Self) -> list[PackageManifest]:
        """Every manifest, oldest first."""
        return sorted(self._manifests.values(), key=lambda manifest: manifest.creation)

    def get(self: Self, manifest_id: uuid.UUID) -> PackageManifest | None:
        return self._manifests.get(manifest_id)

    def target_location(self: Self, manifest: PackageManifest) -> Path:
        return manifest.target_location(self.packages_dir)

    async def add(self: Self, account: Account, package: Software, download_output: DownloadOutput) -> PackageManifest:
        """Create a pending manifest for a download ticket."""
        manifest = PackageManifest(
            account=account,
            package=package,
            url=download_output.download_url,
            signatures=download_output.sinfs,
        )
        self._manifests[manifest.id] = manifest

        logger.info(f"Added manifest {manifest.id} for {package.bundle_id} {package.version}")
        await self._trigger_event(ManifestEvent.ADDED, manifest)
        return manifest

    async def _set_update_status(self: Self, manifest: PackageManifest, update_status: UpdateStatus) -> None:
        if manifest.update_status == update_status:
            return

        manifest.update_status = update_status
        await self._trigger_event(ManifestEvent.UPDATE_STATUS_CHANGED, manifest)

    async def set_state(
        self: Self,
        manifest: PackageManifest,
        status: DownloadStatus,
        *,
        error: str | None = None,
    ) -> None:
        """
        Move a manifest to another download status.

        Completing a download starts a forced update check. Leaving the completed status resets the update status.
        """
        previous = manifest.state.status
        if status != previous and status not in ALLOWED_TRANSITIONS[previous]:
            msg = f"Invalid download state transition: {previous} -> {status}"
            raise ValueError(msg)

        manifest.state = DownloadState(
            status=status,
            percent=1.0 if status == DownloadStatus.COMPLETED else manifest.state.percent,
            speed="" if status != DownloadStatus.DOWNLOADING else manifest.state.speed,
            error=error,
        )
        logger.debug(f"Manifest {manifest.id}: {previous} -> {status}")
        await self._trigger_event(ManifestEvent.STATE_CHANGED, manifest)

        if status == DownloadStatus.COMPLETED:
            # Re-completing keeps the running or settled check.
            if previous != DownloadStatus.COMPLETED:
                await self._set_update_status(manifest, UpdateStatus.idle())
                await self.refresh_update_status(manifest, force=True)
        else:
            self._cancel_update_check(manifest)
            await self._set_update_status(manifest, UpdateStatus.idle())

    async def update_progress(self: Self, manifest: PackageManifest, percent: float, speed: str = "") -> None:
        """Record transfer progress. Ignored unless the manifest is downloading."""
        if manifest.state.status != DownloadStatus.DOWNLOADING:
            return

        manifest.state.percent = min(max(percent, 0.0), 1.0)
        manifest.state.speed = speed
        await self._trigger_event(ManifestEvent.STATE_CHANGED, manifest)

    async def refresh_update_status(self: Self, manifest: PackageManifest, *, force: bool = False) -> None:
        """
        Start an update check for a completed manifest.

        Does nothing while a check is running. Without `force`, a check only starts from `idle` or `failed`.
        """
        if not manifest.completed:
            await self._set_update_status(manifest, UpdateStatus.idle())
            return

        if manifest.update_status.kind == UpdateStatusKind.CHECKING:
            return

        if not force and not manifest.update_status.allows_refresh:
            return

        await self._set_update_status(manifest, UpdateStatus.checking())

        region = country_code(manifest.account.store)
        if region is None:
            logger.warning(
                f"Skipping update check for {manifest.package.bundle_id}; "
                f"unsupported store identifier {manifest.account.store!r}",
            )
            await self._set_update_status(manifest, UpdateStatus.failed(REGION_UNAVAILABLE_MESSAGE))
            return

        task = asyncio.create_task(self._check_for_update(manifest, region))
        self._update_tasks[manifest.id] = task
        task.add_done_callback(lambda _: self._forget_update_task(manifest.id, task))

    def _forget_update_task(self: Self, manifest_id: uuid.UUID, task: asyncio.Task[None]) -> None:
        if self._update_tasks.get(manifest_id) is task:
            del self._update_tasks[manifest_id]

    def _cancel_update_check(self: Self, manifest: PackageManifest) -> None:
        if (task := self._update_tasks.pop(manifest.id, None)) is not None:
            task.cancel()

    async def _check_for_update(self: Self, manifest: PackageManifest, region: str) -> None:
        bundle_id = manifest.package.bundle_id
        logger.debug(f"Checking updates for {bundle_id}")

        try:
            latest = (await self._lookup(bundle_id, region)).version
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to check updates for {bundle_id}: {e!r}")
            status = UpdateStatus.failed(UPDATE_CHECK_FAILED_MESSAGE)
        else:
            if compare_versions(latest, manifest.package.version) > 0:
                logger.info(f"Update available for {bundle_id}: {manifest.package.version} -> {latest}")
                status = UpdateStatus.update_available(latest)
            else:
                status = UpdateStatus.up_to_date(latest)

        # The manifest may have been removed or restarted while the lookup ran.
        if self._manifests.get(manifest.id) is not manifest or not manifest.completed:
            return

        await self._set_update_status(manifest, status)

    async def wait_for_update_checks(self: Self) -> None:
        """Wait until every running update check has finished."""
        while self._update_tasks:
            await asyncio.gather(*self._update_tasks.values(), return_exceptions=True)

    async def perform_action(self: Self, manifest: PackageManifest, action: DownloadAction) -> None:
        if action not in available_actions(manifest):
            msg = f"Action {action} is not available while {manifest.state.status}"
            raise ValueError(msg)

        match action:
            case DownloadAction.PAUSE:
                if self.executor is not None:
                    await self.executor.suspend(manifest)
                await self.set_state(manifest, DownloadStatus.PAUSED)

            case DownloadAction.RESUME | DownloadAction.RETRY:
                await self.set_state(manifest, DownloadStatus.DOWNLOADING)
                if self.executor is not None:
                    await self.executor.start(manifest, self.target_location(manifest))

            case DownloadAction.UPDATE:
                logger.info(f"Update requested for {manifest.package.bundle_id}")
                await self._trigger_event(ManifestEvent.UPDATE_REQUESTED, manifest)

            case DownloadAction.DELETE:
                await self.delete(manifest)

    async def delete(self: Self, manifest: PackageManifest) -> None:
        """Remove a manifest along with its archive, pruning directories left empty."""
        self._cancel_update_check(manifest)

        if self.executor is not None and not manifest.completed:
            await self.executor.cancel(manifest)

        target = self.target_location(manifest)
        target.unlink(missing_ok=True)
        _prune_empty_parents(target.parent, self.packages_dir)

        self._manifests.pop(manifest.id, None)
        logger.info(f"Deleted manifest {manifest.id} for {manifest.package.bundle_id}")
        await self._trigger_event(ManifestEvent.REMOVED, manifest)

    async def load(self: Self, records: Iterable[dict[str, Any]]) -> list[PackageManifest]:
        """Restore persisted manifests. Completed ones get a non-forced update check."""
        loaded = []
        for record in records:
            manifest = PackageManifest.from_dict(record)
            # No check survives a restart.
            if manifest.update_status.kind == UpdateStatusKind.CHECKING:
                manifest.update_status = UpdateStatus.idle()

            self._manifests[manifest.id] = manifest
            loaded.append(manifest)
            await self._trigger_event(ManifestEvent.ADDED, manifest)

        for manifest in loaded:
            if manifest.completed:
                await self.refresh_update_status(manifest)

        return loaded

    def dump(self: Self) -> list[dict[str, Any]]:
        return [manifest.to_dict() for manifest in self.manifests]
