"""
catalog.py: Durable product catalog + singleton settings.

Both live as JSON documents under the data directory:

  products.json   {"products": [Product, ...]}  insertion order preserved
  settings.json   Settings

Loaded once on construction, flushed to disk on every mutation. Readers get
copies, so the in-memory records only change through this class.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .errors import ProductNotFound
from .models import Product, Settings, utc_now

logger = logging.getLogger(__name__)


def _write_json_atomic(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class CatalogStore:
    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.products_path = self.data_dir / "products.json"
        self.settings_path = self.data_dir / "settings.json"
        self._products: Dict[str, Product] = {}
        self._settings = Settings()
        self.load()

    # ── Persistence ───────────────────────────────────────────────────────────

    def load(self) -> None:
        """(Re)load both documents. Missing files mean first run: empty catalog, default settings."""
        self._products = {}
        if self.products_path.exists():
            raw = json.loads(self.products_path.read_text(encoding="utf-8"))
            for item in raw.get("products", []):
                product = Product.model_validate(item)
                self._products[product.id] = product
        if self.settings_path.exists():
            self._settings = Settings.model_validate_json(self.settings_path.read_text(encoding="utf-8"))
        else:
            self._settings = Settings()
        logger.debug("catalog loaded: %d product(s)", len(self._products))

    def _flush_products(self) -> None:
        _write_json_atomic(
            self.products_path,
            {"products": [p.model_dump(mode="json") for p in self._products.values()]},
        )

    def _flush_settings(self) -> None:
        _write_json_atomic(self.settings_path, self._settings.model_dump(mode="json"))

    # ── Products ──────────────────────────────────────────────────────────────

    def add_product(self, product: Product) -> Product:
        if product.id in self._products:
            raise ValueError(f"Product already exists: {product.id}")
        self._products[product.id] = product.model_copy(deep=True)
        self._flush_products()
        logger.info("product %s added (%d image(s))", product.id, len(product.image_paths))
        return product.model_copy(deep=True)

    def update_product(self, product_id: str, **updates) -> Product:
        """
        Merge updates into a product and refresh updated_at.

        The merged record is re-validated, so an update that breaks an invariant
        (e.g. primary_image_index out of range) is rejected and nothing is written.

        Raises:
            ProductNotFound: no product with that id.
            pydantic.ValidationError: merged record is invalid.
        """
        current = self._products.get(product_id)
        if current is None:
            raise ProductNotFound(product_id)
        updates.pop("id", None)
        merged = {**current.model_dump(), **updates, "updated_at": utc_now()}
        product = Product.model_validate(merged)
        self._products[product_id] = product
        self._flush_products()
        logger.debug("product %s updated: %s", product_id, ", ".join(sorted(updates)))
        return product.model_copy(deep=True)

    def delete_product(self, product_id: str) -> bool:
        if self._products.pop(product_id, None) is None:
            return False
        self._flush_products()
        logger.info("product %s deleted", product_id)
        return True

    def get_product(self, product_id: str) -> Optional[Product]:
        product = self._products.get(product_id)
        return product.model_copy(deep=True) if product else None

    def require_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def list_products(self) -> List[Product]:
        return [p.model_copy(deep=True) for p in self._products.values()]

    def total_products(self) -> int:
        return len(self._products)

    def total_images(self) -> int:
        return sum(len(p.image_paths) for p in self._products.values())

    # ── Settings ──────────────────────────────────────────────────────────────

    def get_settings(self) -> Settings:
        return self._settings.model_copy(deep=True)

    def update_settings(self, **updates) -> Settings:
        try:
            settings = Settings.model_validate({**self._settings.model_dump(), **updates})
        except ValidationError:
            logger.warning("rejected settings update: %s", ", ".join(sorted(updates)))
            raise
        self._settings = settings
        self._flush_settings()
        return settings.model_copy(deep=True)

    def reset_settings(self) -> Settings:
        self._settings = Settings()
        self._flush_settings()
        return self.get_settings()
