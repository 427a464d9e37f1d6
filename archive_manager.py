"""
Betaflight Backup - Archive Manager
Collects captured files under one timestamped root folder and packs them
into a ZIP archive.
"""

import io
import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from backup_models import CapturedAsset
from utils.error_handler import ArchiveError

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "Betaflight_Backup_"


def make_root_name(now: Optional[datetime] = None) -> str:
    """Betaflight_Backup_YYYY-MM-DD_HH-MM"""
    now = now or datetime.now()
    return f"{ARCHIVE_PREFIX}{now.strftime('%Y-%m-%d_%H-%M')}"


class BackupArchive:
    """In-memory archive for one run"""

    def __init__(self, root_name: Optional[str] = None):
        self.root_name = root_name or make_root_name()
        self._files: Dict[str, Tuple[bytes, bool]] = {}
        self._discarded = False

    @property
    def file_name(self) -> str:
        return f"{self.root_name}.zip"

    @property
    def file_count(self) -> int:
        return len(self._files)

    def list_files(self) -> List[str]:
        return list(self._files.keys())

    def add(self, asset: CapturedAsset):
        """Store an asset under <root>/<folder>/<file>; a repeated path overwrites"""
        if self._discarded:
            raise ArchiveError(f"Archive {self.root_name} was discarded, cannot add {asset.file_name}")

        path = f"{self.root_name}/{asset.folder_name}/{asset.file_name}"
        payload: Union[bytes, str] = asset.payload
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        if path in self._files:
            logger.warning(f"[Archive] Overwriting {path}")
        self._files[path] = (payload, asset.is_binary)
        logger.debug(f"[Archive] Added {path} ({len(payload)} bytes)")

    def build(self) -> bytes:
        """Pack every stored file into a deflated ZIP"""
        if self._discarded:
            raise ArchiveError(f"Archive {self.root_name} was discarded")
        try:
            buffer = io.BytesIO()
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                zf.writestr(f"{self.root_name}/", "")
                for path, (payload, _) in self._files.items():
                    zf.writestr(path, payload)
            data = buffer.getvalue()
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            raise ArchiveError(f"Failed to build ZIP: {e}") from e
        logger.info(f"[Archive] Built {self.file_name}: {len(self._files)} files, {len(data) / 1024:.1f} KB")
        return data

    def save(self, directory: Union[str, Path]) -> Path:
        """Build and write <root>.zip into ``directory``"""
        target_dir = Path(directory)
        data = self.build()
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target = target_dir / self.file_name
            target.write_bytes(data)
        except OSError as e:
            raise ArchiveError(f"Failed to write {self.file_name}: {e}") from e
        logger.info(f"[Archive] Saved {target}")
        return target

    def discard(self):
        """Drop everything (cancelled or failed run)"""
        self._files.clear()
        self._discarded = True
        logger.debug(f"[Archive] Discarded {self.root_name}")


class ArchiveStore:
    """Finished archives in the data directory"""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def list_archives(self) -> List[str]:
        return sorted(p.name for p in self.directory.glob(f"{ARCHIVE_PREFIX}*.zip"))

    def get_path(self, name: str) -> Path:
        """
        Resolve an archive by file name.

        Raises:
            FileNotFoundError: For unknown names or names outside the store
        """
        if Path(name).name != name or not name.startswith(ARCHIVE_PREFIX) or not name.endswith(".zip"):
            raise FileNotFoundError(f"Archive not found: {name}")
        path = self.directory / name
        if not path.is_file():
            raise FileNotFoundError(f"Archive not found: {name}")
        return path
