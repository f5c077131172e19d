"""
artifacts.py: Local image storage keyed by "{product_id}/{filename}".

Two interchangeable backends behind one async interface:

  FileArtifactStore    one directory per product under a root folder
  SqliteArtifactStore  single-table blob store (path → bytes), aiosqlite

open_artifact_store(config) picks one at startup; nothing else in the app
knows which backend it is talking to.

Filename conventions used by the session:
  original.jpg          picked base image
  edit_<ms>.jpg         conversational edit result
  nobg_<ms>.jpg         background-removal result
  variation_<0..3>.jpg  variation slots
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Union

import aiosqlite
from PIL import UnidentifiedImageError

from .config import AppConfig
from .errors import ArtifactNotFound, PreconditionFailed
from .imaging import sniff_mime, to_jpeg

logger = logging.getLogger(__name__)

IMAGE_EXTS = {".jpg", ".jpeg", ".png"}

ImageSource = Union[str, Path, bytes]


def _check_component(part: str) -> None:
    if not part or "/" in part or "\\" in part or part in (".", ".."):
        raise ValueError(f"Invalid artifact path component: {part!r}")


def make_path(product_id: str, filename: str) -> str:
    _check_component(product_id)
    _check_component(filename)
    return f"{product_id}/{filename}"


def split_path(path: str) -> tuple:
    product_id, sep, filename = path.partition("/")
    if not sep:
        raise ValueError(f"Invalid artifact path: {path!r}")
    make_path(product_id, filename)
    return product_id, filename


def _read_source(source: ImageSource) -> bytes:
    if isinstance(source, bytes):
        return source
    return Path(source).expanduser().read_bytes()


class ArtifactStore(ABC):
    """Binary image persistence. All paths are "{product_id}/{filename}"."""

    @abstractmethod
    async def put(self, product_id: str, filename: str, data: bytes) -> str:
        ...

    @abstractmethod
    async def get(self, path: str) -> bytes:
        ...

    @abstractmethod
    async def delete_all(self, product_id: str) -> None:
        ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        ...

    @abstractmethod
    async def list(self, product_id: str) -> List[str]:
        ...

    async def put_from_source(self, product_id: str, source: ImageSource, filename: str) -> str:
        """
        Copy an image from a file path (or raw bytes) into the store as JPEG.

        Raises:
            PreconditionFailed: the source is missing, unreadable or not an image.
        """
        try:
            data = await asyncio.to_thread(_read_source, source)
            data = await asyncio.to_thread(to_jpeg, data)
        except (OSError, UnidentifiedImageError) as exc:
            logger.warning("could not read image source: %s", exc)
            raise PreconditionFailed(
                f"Could not read image: {exc}",
                action="pick a JPEG or PNG photo",
            ) from exc
        return await self.put(product_id, filename, data)

    async def save_base64_image(self, product_id: str, base64_data: str, filename: str) -> str:
        return await self.put(product_id, filename, base64.b64decode(base64_data))

    async def load_image_as_base64(self, path: str) -> str:
        return base64.b64encode(await self.get(path)).decode("ascii")


# ── Filesystem backend ────────────────────────────────────────────────────────

class FileArtifactStore(ArtifactStore):
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def resolve(self, path: str) -> Path:
        """Filesystem location of an artifact path."""
        product_id, filename = split_path(path)
        return self.root / product_id / filename

    async def put(self, product_id: str, filename: str, data: bytes) -> str:
        path = make_path(product_id, filename)
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(f".{target.name}.tmp")
            tmp.write_bytes(data)
            tmp.replace(target)

        await asyncio.to_thread(_write)
        logger.debug("saved %s (%d bytes)", path, len(data))
        return path

    async def get(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError:
            raise ArtifactNotFound(path) from None

    async def delete_all(self, product_id: str) -> None:
        product_dir = self.root / product_id

        def _remove() -> None:
            if not product_dir.is_dir():
                return
            for child in product_dir.iterdir():
                child.unlink()
            product_dir.rmdir()

        _check_component(product_id)
        await asyncio.to_thread(_remove)
        logger.debug("deleted images for %s", product_id)

    async def delete(self, path: str) -> None:
        target = self.resolve(path)
        await asyncio.to_thread(target.unlink, True)

    async def list(self, product_id: str) -> List[str]:
        _check_component(product_id)
        product_dir = self.root / product_id

        def _scan() -> List[str]:
            if not product_dir.is_dir():
                return []
            return sorted(
                f"{product_id}/{p.name}"
                for p in product_dir.iterdir()
                if p.is_file() and p.suffix.lower() in IMAGE_EXTS
            )

        return await asyncio.to_thread(_scan)


# ── SQLite object-store backend ───────────────────────────────────────────────

class SqliteArtifactStore(ArtifactStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._ready = False

    async def _init(self) -> None:
        """Create the images table on first use."""
        if self._ready:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript("""
                CREATE TABLE IF NOT EXISTS images (
                    path        TEXT PRIMARY KEY,
                    product_id  TEXT NOT NULL,
                    data        BLOB NOT NULL,
                    mime_type   TEXT NOT NULL,
                    timestamp   INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_images_product
                    ON images(product_id);
            """)
            await db.commit()
        self._ready = True

    async def put(self, product_id: str, filename: str, data: bytes) -> str:
        path = make_path(product_id, filename)
        await self._init()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO images (path, product_id, data, mime_type, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (path, product_id, data, sniff_mime(data), int(time.time() * 1000)),
            )
            await db.commit()
        logger.debug("saved %s (%d bytes)", path, len(data))
        return path

    async def get(self, path: str) -> bytes:
        split_path(path)
        await self._init()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT data FROM images WHERE path = ?", (path,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise ArtifactNotFound(path)
        return bytes(row[0])

    async def delete_all(self, product_id: str) -> None:
        _check_component(product_id)
        await self._init()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM images WHERE product_id = ?", (product_id,))
            await db.commit()
        logger.debug("deleted images for %s", product_id)

    async def delete(self, path: str) -> None:
        split_path(path)
        await self._init()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM images WHERE path = ?", (path,))
            await db.commit()

    async def list(self, product_id: str) -> List[str]:
        _check_component(product_id)
        await self._init()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT path FROM images WHERE product_id = ? ORDER BY path", (product_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]


def open_artifact_store(config: AppConfig) -> ArtifactStore:
    """Select the storage backend configured for this install."""
    if config.storage_backend == "sqlite":
        return SqliteArtifactStore(config.images_db)
    return FileArtifactStore(config.images_dir)
