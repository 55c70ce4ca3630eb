from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .catalog import CatalogIndex
from .models import ProductRef

logger = logging.getLogger("storefront.enrichment")


def enrich_product_refs(
    refs: Optional[Sequence[ProductRef]], catalog: Optional[CatalogIndex]
) -> Optional[List[ProductRef]]:
    """Purpose: Fill product ref titles from the catalog index.
    Inputs/Outputs: Inputs are product refs and a catalog index; output is a
        list of the same length and order (None stays None).
    Side Effects / State: None; refs are copied, never mutated.
    Dependencies: Uses CatalogIndex.get.
    Failure Modes: None; an empty or missing index passes every ref through.
    If Removed: Suggestion cards show bare product ids.
    Testing Notes: Unknown ids come back unchanged and nothing is dropped.
    """
    # Nothing to match against: hand the refs back untouched.
    if refs is None:
        return None
    if catalog is None or catalog.is_empty():
        return list(refs)

    enriched: List[ProductRef] = []
    matched = 0
    for ref in refs:
        product = catalog.get(ref.id)
        if product is not None and product.title:
            enriched.append(ref.model_copy(update={"title": product.title}))
            matched += 1
        else:
            enriched.append(ref)
    logger.debug("enriched product refs matched=%d total=%d", matched, len(enriched))
    return enriched
