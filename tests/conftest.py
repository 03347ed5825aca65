"""
ForgeLoop - Test Configuration and Fixtures
"""
import os

import pytest

# Set testing environment before any forgeloop import reads settings
os.environ['FORGELOOP_ENVIRONMENT'] = 'testing'
os.environ['FORGELOOP_TAG_PREFIX'] = 'forge'
os.environ['FORGELOOP_CYCLE_CONFLICT_POLICY'] = 'queue'

from forgeloop.modules.protocol.tag_extractor import TagExtractor
from forgeloop.modules.workspace.backing_store import LocalFileStore, MemoryFileStore
from forgeloop.modules.workspace.workspace_lock import WorkspaceLockRegistry


@pytest.fixture
def extractor() -> TagExtractor:
    """Extractor with the default prefix"""
    return TagExtractor(prefix="forge")


@pytest.fixture
def memory_store() -> MemoryFileStore:
    """Small in-memory workspace"""
    return MemoryFileStore({
        "src/App.tsx": "export default function App() {\n  return null;\n}\n",
        "src/old.ts": "export const old = 1;\n",
        "README.md": "# Demo\n",
    })


@pytest.fixture
def local_store(tmp_path) -> LocalFileStore:
    """Workspace rooted in a temporary directory"""
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.tsx").write_text("export default function App() {}\n", encoding="utf-8")
    return LocalFileStore(tmp_path)


@pytest.fixture
def lock_registry() -> WorkspaceLockRegistry:
    return WorkspaceLockRegistry(policy="queue")
