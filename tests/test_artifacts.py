"""Tests for the artifact store backends."""

import base64
import io

import pytest
from PIL import Image

from lister.artifacts import (
    FileArtifactStore,
    SqliteArtifactStore,
    make_path,
    open_artifact_store,
    split_path,
)
from lister.config import AppConfig
from lister.errors import ArtifactNotFound, PreconditionFailed
from lister.imaging import sniff_mime, to_jpeg

from conftest import make_image


class TestPaths:
    """Tests for artifact path helpers."""

    def test_make_and_split(self):
        """Test paths are '{product_id}/{filename}'."""
        assert make_path("p1", "original.jpg") == "p1/original.jpg"
        assert split_path("p1/original.jpg") == ("p1", "original.jpg")

    @pytest.mark.parametrize("product_id,filename", [("", "a.jpg"), ("..", "a.jpg"), ("p1", "x/y.jpg")])
    def test_rejects_bad_components(self, product_id, filename):
        """Test traversal and nested names are refused."""
        with pytest.raises(ValueError):
            make_path(product_id, filename)

    def test_split_requires_separator(self):
        """Test a bare filename is not an artifact path."""
        with pytest.raises(ValueError):
            split_path("original.jpg")


class TestArtifactStore:
    """Behaviour shared by both backends."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, artifact_store, jpeg_bytes):
        """Test stored bytes come back unchanged."""
        path = await artifact_store.put("p1", "original.jpg", jpeg_bytes)
        assert path == "p1/original.jpg"
        assert await artifact_store.get(path) == jpeg_bytes

    @pytest.mark.asyncio
    async def test_put_overwrites(self, artifact_store):
        """Test a second put on the same path replaces the bytes."""
        await artifact_store.put("p1", "variation_0.jpg", b"first")
        await artifact_store.put("p1", "variation_0.jpg", b"second")
        assert await artifact_store.get("p1/variation_0.jpg") == b"second"

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, artifact_store):
        """Test reading an unknown path raises ArtifactNotFound."""
        with pytest.raises(ArtifactNotFound):
            await artifact_store.get("p1/missing.jpg")

    @pytest.mark.asyncio
    async def test_list_is_per_product_and_sorted(self, artifact_store):
        """Test list only returns the requested product's images."""
        await artifact_store.put("p1", "variation_1.jpg", b"b")
        await artifact_store.put("p1", "original.jpg", b"a")
        await artifact_store.put("p2", "original.jpg", b"c")
        assert await artifact_store.list("p1") == ["p1/original.jpg", "p1/variation_1.jpg"]
        assert await artifact_store.list("nobody") == []

    @pytest.mark.asyncio
    async def test_delete_all_leaves_other_products(self, artifact_store):
        """Test delete_all removes one product only."""
        await artifact_store.put("p1", "original.jpg", b"a")
        await artifact_store.put("p1", "edit_1.jpg", b"b")
        await artifact_store.put("p2", "original.jpg", b"c")

        await artifact_store.delete_all("p1")

        assert await artifact_store.list("p1") == []
        assert await artifact_store.get("p2/original.jpg") == b"c"

    @pytest.mark.asyncio
    async def test_delete_all_unknown_product_is_noop(self, artifact_store):
        """Test deleting a product with no images does not fail."""
        await artifact_store.delete_all("nobody")

    @pytest.mark.asyncio
    async def test_delete_single(self, artifact_store):
        """Test delete removes one path."""
        await artifact_store.put("p1", "original.jpg", b"a")
        await artifact_store.put("p1", "edit_1.jpg", b"b")
        await artifact_store.delete("p1/edit_1.jpg")
        assert await artifact_store.list("p1") == ["p1/original.jpg"]

    @pytest.mark.asyncio
    async def test_base64_helpers(self, artifact_store):
        """Test base64 save and load agree with raw bytes."""
        path = await artifact_store.save_base64_image("p1", "AAAA", "edit_1.jpg")
        assert await artifact_store.get(path) == base64.b64decode("AAAA")
        assert await artifact_store.load_image_as_base64(path) == "AAAA"

    @pytest.mark.asyncio
    async def test_put_from_source_png_file_becomes_jpeg(self, artifact_store, tmp_path, png_bytes):
        """Test a picked PNG is re-encoded so original.jpg really is JPEG."""
        src = tmp_path / "pick.png"
        src.write_bytes(png_bytes)

        path = await artifact_store.put_from_source("p1", src, "original.jpg")

        stored = await artifact_store.get(path)
        with Image.open(io.BytesIO(stored)) as img:
            assert img.format == "JPEG"
            assert img.size == (8, 8)

    @pytest.mark.asyncio
    async def test_put_from_source_jpeg_bytes_kept(self, artifact_store, jpeg_bytes):
        """Test JPEG input is stored byte-for-byte."""
        path = await artifact_store.put_from_source("p1", jpeg_bytes, "original.jpg")
        assert await artifact_store.get(path) == jpeg_bytes

    @pytest.mark.asyncio
    async def test_put_from_source_unreadable(self, artifact_store, tmp_path):
        """Test missing files and non-image bytes are refused and nothing is stored."""
        with pytest.raises(PreconditionFailed, match="Could not read image"):
            await artifact_store.put_from_source("p1", tmp_path / "gone.jpg", "original.jpg")
        with pytest.raises(PreconditionFailed) as info:
            await artifact_store.put_from_source("p1", b"plain text", "original.jpg")
        assert info.value.action == "pick a JPEG or PNG photo"
        assert await artifact_store.list("p1") == []


class TestFileArtifactStore:
    """Filesystem-specific behaviour."""

    @pytest.mark.asyncio
    async def test_layout_on_disk(self, file_store, tmp_path):
        """Test each product gets its own directory."""
        await file_store.put("p1", "original.jpg", b"a")
        assert (tmp_path / "images" / "p1" / "original.jpg").read_bytes() == b"a"

    @pytest.mark.asyncio
    async def test_list_ignores_non_images(self, file_store, tmp_path):
        """Test stray files are not listed."""
        await file_store.put("p1", "original.jpg", b"a")
        (tmp_path / "images" / "p1" / "notes.txt").write_text("x")
        assert await file_store.list("p1") == ["p1/original.jpg"]


class TestSqliteArtifactStore:
    """SQLite-specific behaviour."""

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        """Test blobs persist across store instances."""
        db = tmp_path / "images.db"
        await SqliteArtifactStore(db).put("p1", "original.jpg", b"a")
        assert await SqliteArtifactStore(db).get("p1/original.jpg") == b"a"


class TestBackendSelection:
    """Tests for open_artifact_store."""

    def test_file_backend(self, tmp_path):
        store = open_artifact_store(AppConfig(data_dir=tmp_path, storage_backend="file"))
        assert isinstance(store, FileArtifactStore)
        assert store.root == tmp_path / "products"

    def test_sqlite_backend(self, tmp_path):
        store = open_artifact_store(AppConfig(data_dir=tmp_path, storage_backend="sqlite"))
        assert isinstance(store, SqliteArtifactStore)
        assert store.db_path == tmp_path / "images.db"


class TestImaging:
    """Tests for the Pillow helpers."""

    def test_sniff_mime(self, jpeg_bytes, png_bytes):
        """Test formats are detected, unknown bytes use the default."""
        assert sniff_mime(jpeg_bytes) == "image/jpeg"
        assert sniff_mime(png_bytes) == "image/png"
        assert sniff_mime(b"AAAA") == "image/jpeg"

    def test_to_jpeg_flattens_transparency(self):
        """Test transparent pixels end up on white."""
        out = io.BytesIO()
        Image.new("RGBA", (4, 4), (0, 0, 0, 0)).save(out, format="PNG")
        with Image.open(io.BytesIO(to_jpeg(out.getvalue()))) as img:
            assert img.mode == "RGB"
            assert all(c > 240 for c in img.getpixel((1, 1)))

    def test_to_jpeg_keeps_jpeg(self):
        data = make_image("JPEG")
        assert to_jpeg(data) is data
