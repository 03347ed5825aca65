"""
Backing Stores - the real filesystem underneath the staging overlay

BackingStore is the collaborator interface the staging layer commits to.
LocalFileStore talks to disk through aiofiles; MemoryFileStore keeps files in
a dict for dry runs and tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

import aiofiles
import aiofiles.os

from forgeloop.core.config import settings
from forgeloop.core.exceptions import UnsafePathError
from forgeloop.core.logging_config import logger
from forgeloop.modules.protocol.paths import normalize_workspace_path


FileContent = Union[str, bytes]


class BackingStore(ABC):
    """Workspace-relative file operations; paths are already normalized"""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def read(self, path: str) -> Optional[FileContent]:
        """Return file content, or None if the file does not exist"""
        pass

    @abstractmethod
    async def write(self, path: str, content: FileContent) -> None:
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a file; returns False if it did not exist"""
        pass

    @abstractmethod
    async def rename(self, from_path: str, to_path: str) -> None:
        """Move a file, replacing the destination if present"""
        pass


class LocalFileStore(BackingStore):
    """Files under a workspace root directory on the local disk"""

    def __init__(self, root: Union[str, Path], max_file_size: Optional[int] = None):
        self.root = Path(root).resolve()
        self.max_file_size = max_file_size if max_file_size is not None else settings.max_file_size_bytes

    def _full_path(self, path: str) -> Path:
        full_path = self.root / normalize_workspace_path(path)
        # Symlinks inside the workspace must not lead outside it
        try:
            full_path.resolve().relative_to(self.root)
        except ValueError:
            raise UnsafePathError(path, "resolves outside the workspace root")
        return full_path

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.isfile(self._full_path(path))

    async def read(self, path: str) -> Optional[FileContent]:
        full_path = self._full_path(path)
        if not await aiofiles.os.path.isfile(full_path):
            return None

        async with aiofiles.open(full_path, "rb") as f:
            raw = await f.read()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw

    async def write(self, path: str, content: FileContent) -> None:
        full_path = self._full_path(path)
        data = content.encode("utf-8") if isinstance(content, str) else content

        if len(data) > self.max_file_size:
            raise ValueError(f"File too large ({len(data)} bytes, max {self.max_file_size})")

        await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
        async with aiofiles.open(full_path, "wb") as f:
            await f.write(data)

        logger.debug(f"[LocalFileStore] Wrote {path} ({len(data)} bytes)")

    async def delete(self, path: str) -> bool:
        full_path = self._full_path(path)
        if not await aiofiles.os.path.isfile(full_path):
            return False
        await aiofiles.os.remove(full_path)
        logger.debug(f"[LocalFileStore] Deleted {path}")
        return True

    async def rename(self, from_path: str, to_path: str) -> None:
        source = self._full_path(from_path)
        destination = self._full_path(to_path)
        if not await aiofiles.os.path.isfile(source):
            raise FileNotFoundError(f"No such file: {from_path}")

        await aiofiles.os.makedirs(destination.parent, exist_ok=True)
        await aiofiles.os.replace(source, destination)
        logger.debug(f"[LocalFileStore] Renamed {from_path} -> {to_path}")


class MemoryFileStore(BackingStore):
    """Dict-backed store; used for dry runs"""

    def __init__(self, files: Optional[Dict[str, FileContent]] = None):
        self.files: Dict[str, FileContent] = {
            normalize_workspace_path(path): content for path, content in (files or {}).items()
        }

    async def exists(self, path: str) -> bool:
        return normalize_workspace_path(path) in self.files

    async def read(self, path: str) -> Optional[FileContent]:
        return self.files.get(normalize_workspace_path(path))

    async def write(self, path: str, content: FileContent) -> None:
        self.files[normalize_workspace_path(path)] = content

    async def delete(self, path: str) -> bool:
        return self.files.pop(normalize_workspace_path(path), None) is not None

    async def rename(self, from_path: str, to_path: str) -> None:
        source = normalize_workspace_path(from_path)
        if source not in self.files:
            raise FileNotFoundError(f"No such file: {from_path}")
        self.files[normalize_workspace_path(to_path)] = self.files.pop(source)
