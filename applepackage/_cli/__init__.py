#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
from pathlib import Path
from typing import ClassVar

from .util.app_dirs import USER_DATA_DIR


class CLIOptions:
    save_path: ClassVar[Path] = USER_DATA_DIR
    account_path: ClassVar[Path] = save_path / "account.json"
    manifests_path: ClassVar[Path] = save_path / "manifests.json"
    packages_dir: ClassVar[Path] = save_path / "Packages"
