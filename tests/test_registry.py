#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
import asyncio
from dataclasses import replace

import pytest

from applepackage._models import DownloadOutput, Sinf
from applepackage.downloads import (
    DownloadAction,
    DownloadStatus,
    ManifestEvent,
    ManifestRegistry,
    UpdateStatus,
    UpdateStatusKind,
)
from applepackage.downloads._registry import REGION_UNAVAILABLE_MESSAGE, UPDATE_CHECK_FAILED_MESSAGE
from applepackage.exceptions import ApplePackageError

DOWNLOAD_OUTPUT = DownloadOutput(
    download_url="https://iosapps.itunes.apple.com/pages.ipa",
    sinfs=[Sinf(id=0, data=b"sinf")],
    bundle_short_version_string="13.1",
    bundle_version="7011",
)


class FakeLookup:
    def __init__(self, software, version: str = "13.1") -> None:
        self.software = software
        self.version = version
        self.error: Exception | None = None
        self.calls: list[tuple[str, str]] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, bundle_id: str, region: str):
        self.calls.append((bundle_id, region))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return replace(self.software, version=self.version)


class FakeExecutor:
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    async def start(self, manifest, destination) -> None:
        self.calls.append(("start", destination))

    async def suspend(self, manifest) -> None:
        self.calls.append(("suspend", manifest.id))

    async def cancel(self, manifest) -> None:
        self.calls.append(("cancel", manifest.id))


@pytest.fixture()
def fake_lookup(software):
    return FakeLookup(software)


@pytest.fixture()
def executor():
    return FakeExecutor()


@pytest.fixture()
def registry(tmp_path, configuration, executor, fake_lookup):
    return ManifestRegistry(
        tmp_path / "packages",
        executor=executor,
        configuration=configuration,
        lookup_function=fake_lookup,
    )


async def _completed(registry, account, software):
    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)
    await registry.set_state(manifest, DownloadStatus.DOWNLOADING)
    await registry.set_state(manifest, DownloadStatus.COMPLETED)
    await registry.wait_for_update_checks()
    return manifest


@pytest.mark.asyncio()
async def test_add(registry, account, software):
    added = []

    @registry.register_event_listener(ManifestEvent.ADDED)
    async def on_added(manifest):
        added.append(manifest)

    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)

    assert added == [manifest]
    assert registry.manifests == [manifest]
    assert registry.get(manifest.id) is manifest
    assert manifest.state.status == DownloadStatus.PENDING
    assert manifest.url == DOWNLOAD_OUTPUT.download_url
    assert manifest.signatures == DOWNLOAD_OUTPUT.sinfs
    assert manifest.update_status == UpdateStatus.idle()


@pytest.mark.asyncio()
async def test_invalid_transition(registry, account, software):
    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)

    with pytest.raises(ValueError, match="pending -> completed"):
        await registry.set_state(manifest, DownloadStatus.COMPLETED)

    assert manifest.state.status == DownloadStatus.PENDING


@pytest.mark.asyncio()
async def test_progress(registry, account, software):
    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)

    await registry.update_progress(manifest, 0.5, "1 MB")
    assert manifest.percent == 0.0

    await registry.set_state(manifest, DownloadStatus.DOWNLOADING)
    await registry.update_progress(manifest, 1.5, "1 MB")
    assert manifest.percent == 1.0
    assert manifest.speed == "1 MB"

    await registry.set_state(manifest, DownloadStatus.PAUSED)
    assert manifest.speed == ""
    assert manifest.hint == "Paused"


@pytest.mark.asyncio()
async def test_completion_finds_update(registry, account, software, fake_lookup):
    fake_lookup.version = "14.0"

    manifest = await _completed(registry, account, software)

    assert manifest.percent == 1.0
    assert fake_lookup.calls == [("com.apple.Pages", "US")]
    assert manifest.update_status == UpdateStatus.update_available("14.0")
    assert manifest.hint == "Update available: 14.0"


@pytest.mark.asyncio()
async def test_completion_up_to_date(registry, account, software):
    manifest = await _completed(registry, account, software)

    assert manifest.update_status == UpdateStatus.up_to_date("13.1")


@pytest.mark.asyncio()
async def test_update_check_failure(registry, account, software, fake_lookup):
    fake_lookup.error = ApplePackageError("app not found")

    manifest = await _completed(registry, account, software)

    assert manifest.update_status == UpdateStatus.failed(UPDATE_CHECK_FAILED_MESSAGE)
    assert manifest.hint == "Update check failed"


@pytest.mark.asyncio()
async def test_unknown_store_fails_without_lookup(registry, account, software, fake_lookup):
    account.store = "999999"

    manifest = await _completed(registry, account, software)

    assert fake_lookup.calls == []
    assert manifest.update_status == UpdateStatus.failed(REGION_UNAVAILABLE_MESSAGE)


@pytest.mark.asyncio()
async def test_update_status_events(registry, account, software):
    kinds = []

    @registry.register_event_listener(ManifestEvent.UPDATE_STATUS_CHANGED)
    async def on_update_status(manifest):
        kinds.append(manifest.update_status.kind)

    await _completed(registry, account, software)

    assert kinds == [UpdateStatusKind.CHECKING, UpdateStatusKind.UP_TO_DATE]


@pytest.mark.asyncio()
async def test_refresh_is_not_repeated_without_force(registry, account, software, fake_lookup):
    manifest = await _completed(registry, account, software)

    await registry.refresh_update_status(manifest)
    await registry.wait_for_update_checks()
    assert len(fake_lookup.calls) == 1

    await registry.refresh_update_status(manifest, force=True)
    await registry.wait_for_update_checks()
    assert len(fake_lookup.calls) == 2


@pytest.mark.asyncio()
async def test_refresh_ignored_while_checking(registry, account, software, fake_lookup):
    fake_lookup.gate = asyncio.Event()
    manifest = await _completed_without_waiting(registry, account, software)

    await registry.refresh_update_status(manifest, force=True)
    fake_lookup.gate.set()
    await registry.wait_for_update_checks()

    assert len(fake_lookup.calls) == 1
    assert manifest.update_status == UpdateStatus.up_to_date("13.1")


@pytest.mark.asyncio()
async def test_restart_discards_running_check(registry, account, software, fake_lookup):
    fake_lookup.gate = asyncio.Event()
    manifest = await _completed_without_waiting(registry, account, software)
    assert manifest.update_status == UpdateStatus.checking()

    await registry.set_state(manifest, DownloadStatus.PENDING)
    fake_lookup.gate.set()
    await registry.wait_for_update_checks()

    assert manifest.update_status == UpdateStatus.idle()
    assert manifest.hint == "Pending..."


@pytest.mark.asyncio()
async def test_unexpected_lookup_error_fails_check(registry, account, software, fake_lookup):
    fake_lookup.error = ValueError("invalid literal for int()")

    manifest = await _completed(registry, account, software)

    assert manifest.update_status == UpdateStatus.failed(UPDATE_CHECK_FAILED_MESSAGE)

    fake_lookup.error = None
    await registry.refresh_update_status(manifest)
    await registry.wait_for_update_checks()

    assert len(fake_lookup.calls) == 2
    assert manifest.update_status == UpdateStatus.up_to_date("13.1")


@pytest.mark.asyncio()
async def test_repeated_completion_keeps_running_check(registry, account, software, fake_lookup):
    fake_lookup.gate = asyncio.Event()
    manifest = await _completed_without_waiting(registry, account, software)

    await registry.set_state(manifest, DownloadStatus.COMPLETED)
    assert manifest.update_status == UpdateStatus.checking()

    fake_lookup.gate.set()
    await registry.wait_for_update_checks()

    assert len(fake_lookup.calls) == 1
    assert manifest.update_status == UpdateStatus.up_to_date("13.1")


async def _completed_without_waiting(registry, account, software):
    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)
    await registry.set_state(manifest, DownloadStatus.DOWNLOADING)
    await registry.set_state(manifest, DownloadStatus.COMPLETED)
    # Let the check start and block on the gate.
    await asyncio.sleep(0)
    return manifest


#
# -- Actions --
#


@pytest.mark.asyncio()
async def test_pause_and_resume(registry, executor, account, software):
    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)
    await registry.set_state(manifest, DownloadStatus.DOWNLOADING)

    await registry.perform_action(manifest, DownloadAction.PAUSE)
    assert manifest.state.status == DownloadStatus.PAUSED

    await registry.perform_action(manifest, DownloadAction.RESUME)
    assert manifest.state.status == DownloadStatus.DOWNLOADING

    assert executor.calls == [("suspend", manifest.id), ("start", registry.target_location(manifest))]


@pytest.mark.asyncio()
async def test_retry_clears_error(registry, executor, account, software):
    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)
    await registry.set_state(manifest, DownloadStatus.FAILED, error="Connection lost")
    assert manifest.hint == "Connection lost"

    await registry.perform_action(manifest, DownloadAction.RETRY)

    assert manifest.state.status == DownloadStatus.DOWNLOADING
    assert manifest.state.error is None
    assert executor.calls == [("start", registry.target_location(manifest))]


@pytest.mark.asyncio()
async def test_unavailable_action(registry, account, software):
    manifest = await registry.add(account, software, DOWNLOAD_OUTPUT)

    with pytest.raises(ValueError, match="not available"):
        await registry.perform_action(manifest, DownloadAction.PAUSE)


@pytest.mark.asyncio()
async def test_update_action_emits_request(registry, account, software, fake_lookup):
    fake_lookup.version = "14.0"
    manifest = await _completed(registry, account, software)
    requested = []

    @registry.register_event_listener(ManifestEvent.UPDATE_REQUESTED)
    async def on_update_requested(manifest):
        requested.append(manifest)

    await registry.perform_action(manifest, DownloadAction.UPDATE)

    assert requested == [manifest]


@pytest.mark.asyncio()
async def test_delete_removes_archive_and_empty_directories(registry, executor, account, software):
    manifest = await _completed(registry, account, software)
    target = registry.target_location(manifest)
    target.parent.mkdir(parents=True)
    target.write_bytes(b"ipa")

    removed = []

    @registry.register_event_listener(ManifestEvent.REMOVED)
    async def on_removed(manifest):
        removed.append(manifest)

    await registry.perform_action(manifest, DownloadAction.DELETE)

    assert not target.exists()
    assert not (registry.packages_dir / "com.apple.Pages").exists()
    assert registry.manifests == []
    assert removed == [manifest]
    assert executor.calls == []


@pytest.mark.asyncio()
async def test_delete_keeps_shared_directories(registry, executor, account, software):
    first = await registry.add(account, software, DOWNLOAD_OUTPUT)
    second = await registry.add(account, software, DOWNLOAD_OUTPUT)
    for manifest in (first, second):
        target = registry.target_location(manifest)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"partial")

    await registry.delete(first)

    assert not registry.target_location(first).exists()
    assert registry.target_location(second).exists()
    assert executor.calls == [("cancel", first.id)]


#
# -- Persistence --
#


@pytest.mark.asyncio()
async def test_load_and_dump(registry, tmp_path, configuration, account, software, fake_lookup):
    fake_lookup.version = "14.0"
    completed = await _completed(registry, account, software)
    pending = await registry.add(account, software, DOWNLOAD_OUTPUT)

    records = registry.dump()
    assert [record["id"] for record in records] == [str(completed.id), str(pending.id)]

    reloaded_lookup = FakeLookup(software, "14.0")
    reloaded = ManifestRegistry(tmp_path / "packages", configuration=configuration, lookup_function=reloaded_lookup)
    loaded = await reloaded.load(records)
    await reloaded.wait_for_update_checks()

    assert [manifest.id for manifest in loaded] == [completed.id, pending.id]
    assert reloaded.get(completed.id).update_status == UpdateStatus.update_available("14.0")
    assert reloaded.get(pending.id).update_status == UpdateStatus.idle()
    # A settled update status is kept without a new check.
    assert reloaded_lookup.calls == []


@pytest.mark.asyncio()
async def test_load_restarts_interrupted_check(registry, tmp_path, configuration, account, software):
    manifest = await _completed(registry, account, software)
    record = manifest.to_dict()
    record["updateStatus"] = {"caseName": "checking"}

    reloaded_lookup = FakeLookup(software, "14.0")
    reloaded = ManifestRegistry(tmp_path / "packages", configuration=configuration, lookup_function=reloaded_lookup)
    await reloaded.load([record])
    await reloaded.wait_for_update_checks()

    assert reloaded_lookup.calls == [("com.apple.Pages", "US")]
    assert reloaded.get(manifest.id).update_status == UpdateStatus.update_available("14.0")
