#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
import json
from logging import getLogger
from pathlib import Path

from ..._models import Account
from ...downloads import ManifestRegistry

logger = getLogger(__name__)


def load_account(path: Path) -> Account | None:
    if not path.is_file():
        return None

    try:
        return Account.from_dict(json.loads(path.read_text()))
    except (ValueError, KeyError) as e:
        logger.warning(f"Ignoring unreadable account file {path}: {e}")
        return None


def save_account(path: Path, account: Account) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(account.to_dict(), indent=2))
    path.chmod(0o600)


def remove_account(path: Path) -> bool:
    if not path.is_file():
        return False

    path.unlink()
    return True


async def load_registry(path: Path, packages_dir: Path) -> ManifestRegistry:
    registry = ManifestRegistry(packages_dir)
    if path.is_file():
        await registry.load(json.loads(path.read_text()))

    return registry


def save_registry(path: Path, registry: ManifestRegistry) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(registry.dump(), indent=2))
