"""Tests for the catalog store."""

import json

import pytest
from pydantic import ValidationError

from lister.catalog import CatalogStore
from lister.errors import ProductNotFound
from lister.models import Product


def _product(pid="p1", images=("p1/original.jpg",)):
    return Product(id=pid, image_paths=list(images))


class TestProducts:
    """Tests for product records."""

    def test_empty_on_first_run(self, catalog):
        """Test a fresh data dir has no products."""
        assert catalog.list_products() == []
        assert catalog.total_products() == 0

    def test_add_and_get(self, catalog):
        """Test an added product can be read back."""
        catalog.add_product(_product())
        assert catalog.get_product("p1").image_paths == ["p1/original.jpg"]
        assert catalog.get_product("nope") is None

    def test_add_duplicate_rejected(self, catalog):
        """Test ids are unique."""
        catalog.add_product(_product())
        with pytest.raises(ValueError, match="already exists"):
            catalog.add_product(_product())

    def test_insertion_order(self, catalog):
        """Test list_products keeps insertion order."""
        for pid in ("b", "a", "c"):
            catalog.add_product(_product(pid, images=()))
        assert [p.id for p in catalog.list_products()] == ["b", "a", "c"]

    def test_update_merges_and_stamps(self, catalog):
        """Test update keeps other fields and refreshes updated_at."""
        catalog.add_product(_product())
        before = catalog.get_product("p1").updated_at

        updated = catalog.update_product("p1", title="Mug", tags=["ceramic"])

        assert updated.title == "Mug"
        assert updated.image_paths == ["p1/original.jpg"]
        assert updated.updated_at >= before

    def test_update_unknown_raises(self, catalog):
        """Test updating a missing product raises ProductNotFound."""
        with pytest.raises(ProductNotFound):
            catalog.update_product("nope", title="x")

    def test_update_cannot_change_id(self, catalog):
        """Test the id is not updatable."""
        catalog.add_product(_product())
        assert catalog.update_product("p1", id="other").id == "p1"

    def test_invalid_update_not_written(self, catalog):
        """Test an out-of-range primary index is rejected and nothing changes."""
        catalog.add_product(_product())
        with pytest.raises(ValidationError):
            catalog.update_product("p1", primary_image_index=3)
        assert catalog.get_product("p1").primary_image_index == 0

    def test_returned_copies_are_detached(self, catalog):
        """Test mutating a returned product does not touch the catalog."""
        catalog.add_product(_product())
        catalog.get_product("p1").tags.append("sneaky")
        assert catalog.get_product("p1").tags == []

    def test_delete(self, catalog):
        """Test delete reports whether anything was removed."""
        catalog.add_product(_product())
        assert catalog.delete_product("p1") is True
        assert catalog.delete_product("p1") is False
        assert catalog.get_product("p1") is None

    def test_totals(self, catalog):
        """Test product and image counts."""
        catalog.add_product(_product("a", images=("a/original.jpg", "a/variation_0.jpg")))
        catalog.add_product(_product("b", images=("b/original.jpg",)))
        assert catalog.total_products() == 2
        assert catalog.total_images() == 3

    def test_persists_across_instances(self, catalog, tmp_path):
        """Test every mutation is flushed to products.json."""
        catalog.add_product(_product())
        catalog.update_product("p1", title="Mug")

        reopened = CatalogStore(tmp_path / "data")
        assert reopened.require_product("p1").title == "Mug"

        raw = json.loads((tmp_path / "data" / "products.json").read_text())
        assert [p["id"] for p in raw["products"]] == ["p1"]


class TestProductModel:
    """Tests for Product invariants."""

    def test_duplicate_images_rejected(self):
        with pytest.raises(ValidationError):
            Product(id="p1", image_paths=["p1/a.jpg", "p1/a.jpg"])

    def test_primary_image(self):
        product = Product(id="p1", image_paths=["p1/a.jpg", "p1/b.jpg"], primary_image_index=1)
        assert product.primary_image == "p1/b.jpg"
        assert Product(id="p2").primary_image is None

    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            Product(id="p1", listing_score=101)


class TestSettings:
    """Tests for the settings singleton."""

    def test_defaults(self, catalog):
        """Test first-run settings."""
        settings = catalog.get_settings()
        assert settings.gemini_api_key == ""
        assert settings.default_tone == "professional"
        assert settings.prefer_quality is False

    def test_update_persists(self, catalog, tmp_path):
        """Test settings survive a reload."""
        catalog.update_settings(gemini_api_key="k", brand_name="Acme", prefer_quality=True)
        reopened = CatalogStore(tmp_path / "data")
        assert reopened.get_settings().brand_name == "Acme"
        assert reopened.get_settings().prefer_quality is True

    def test_invalid_tone_rejected(self, catalog):
        """Test unknown tones are refused and settings stay unchanged."""
        with pytest.raises(ValidationError):
            catalog.update_settings(default_tone="sarcastic")
        assert catalog.get_settings().default_tone == "professional"

    def test_reset(self, catalog):
        """Test reset restores defaults."""
        catalog.update_settings(brand_name="Acme")
        assert catalog.reset_settings().brand_name == ""
