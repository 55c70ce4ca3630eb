"""Catalog index for product enrichment.

Holds the products returned by the storefront product listing, keyed by id, and
answers read-only lookups for the enrichment step.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .models import CatalogProduct, ProductId

logger = logging.getLogger("storefront.catalog")


def product_key(product_id: ProductId) -> str:
    """Ids arrive as ints from the chat backend and as strings elsewhere."""
    return str(product_id).strip()


class CatalogIndex:
    """Read-only lookup of catalog products by identifier."""

    def __init__(self, products: Optional[Iterable[CatalogProduct]] = None) -> None:
        """Purpose: Build the index from an optional product iterable.
        Inputs/Outputs: Input is an iterable of CatalogProduct; no return value.
        Side Effects / State: Populates the in-memory id map.
        Dependencies: Uses replace().
        Failure Modes: None; later duplicates overwrite earlier ids.
        If Removed: Enrichment has nothing to match product refs against.
        Testing Notes: Lookup with int and str forms of the same id.
        """
        self._items: Dict[str, CatalogProduct] = {}
        if products is not None:
            self.replace(products)

    @classmethod
    def from_payload(cls, payload: Any) -> "CatalogIndex":
        """Purpose: Build an index from a raw product listing payload.
        Inputs/Outputs: Input is a list of product dicts; output is a CatalogIndex.
        Side Effects / State: None.
        Dependencies: Uses parse_products.
        Failure Modes: Non-list payloads yield an empty index.
        If Removed: Callers must validate product dicts themselves.
        Testing Notes: Invalid entries are skipped, valid ones kept.
        """
        return cls(parse_products(payload))

    def replace(self, products: Iterable[CatalogProduct]) -> None:
        """Swap the whole index content in one assignment."""
        items: Dict[str, CatalogProduct] = {}
        for product in products:
            items[product_key(product.id)] = product
        self._items = items
        logger.info("catalog index loaded products=%d", len(items))

    def get(self, product_id: ProductId) -> Optional[CatalogProduct]:
        return self._items.get(product_key(product_id))

    def __contains__(self, product_id: object) -> bool:
        return isinstance(product_id, (int, str)) and product_key(product_id) in self._items

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items


def parse_products(payload: Any) -> List[CatalogProduct]:
    """Validate product dicts from the listing endpoint, skipping bad entries."""
    if not isinstance(payload, list):
        logger.warning("product listing is not a list: %s", type(payload).__name__)
        return []
    products: List[CatalogProduct] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        try:
            products.append(CatalogProduct.model_validate(entry))
        except ValidationError as exc:
            logger.debug("skipping invalid product id=%r: %s", entry.get("id"), exc.error_count())
    return products
