# Overview: Pre-checkout cart for one client, persisted through ClientStorage.

from __future__ import annotations

import logging
from typing import Any

from ..validation import MAX_LINE_QUANTITY, coerce_int, coerce_quantity, is_valid_cart_entry, require_product
from .storage_service import ClientStorage, KEY_CART


class CartItemNotFound(LookupError):
    pass


class CartStore:
    """
    Key-quantity map of selected products, keyed by product id.

    Every mutation writes the full entry list back to storage before it
    returns. Totals are always computed from the entry list.
    """

    def __init__(
        self,
        storage: ClientStorage,
        client_id: str,
        *,
        min_qty: int = 1,
        logger: logging.Logger | None = None,
    ):
        self.storage = storage
        self.client_id = client_id
        self.min_qty = max(1, int(min_qty))
        self.logger = logger or logging.getLogger(__name__)
        self._entries: list[dict] = self._load()

    def _load(self) -> list[dict]:
        raw = self.storage.get(self.client_id, KEY_CART, default=[])
        if not isinstance(raw, list):
            self.logger.warning("Ignoring non-list cart for client %s", self.client_id)
            return []

        entries: list[dict] = []
        seen: dict[Any, dict] = {}
        for item in raw:
            if not is_valid_cart_entry(item):
                continue
            try:
                product_id = coerce_int(item["product"]["id"], "product.id")
                qty = coerce_int(item["qty"], "qty")
            except ValueError:
                continue
            qty = self._clamp(qty)
            if product_id in seen:
                seen[product_id]["qty"] = self._clamp(seen[product_id]["qty"] + qty)
                continue
            entry = {"product": {**item["product"], "id": product_id}, "qty": qty}
            seen[product_id] = entry
            entries.append(entry)
        return entries

    def _clamp(self, qty: int) -> int:
        """Stored quantities are clamped to [min_qty, MAX_LINE_QUANTITY], never rejected."""
        return min(max(self.min_qty, qty), MAX_LINE_QUANTITY)

    def _persist(self) -> None:
        self.storage.set(self.client_id, KEY_CART, self._entries)

    def _find(self, product_id: int) -> dict | None:
        for entry in self._entries:
            if entry["product"]["id"] == product_id:
                return entry
        return None

    # -------------------- mutations --------------------

    def add_item(self, product: Any, qty: Any = 1) -> dict:
        product = require_product(product)
        qty = coerce_quantity(qty, minimum=self.min_qty)

        existing = self._find(product["id"])
        if existing is not None:
            existing["qty"] = coerce_quantity(existing["qty"] + qty, minimum=self.min_qty)
            entry = existing
        else:
            entry = {"product": product, "qty": qty}
            self._entries.append(entry)
        self._persist()
        return dict(entry)

    def update_qty(self, product_id: Any, qty: Any) -> dict:
        product_id = coerce_int(product_id, "product_id")
        qty = coerce_quantity(qty, minimum=self.min_qty)
        entry = self._find(product_id)
        if entry is None:
            raise CartItemNotFound(f"Product {product_id} is not in the cart")
        entry["qty"] = qty
        self._persist()
        return dict(entry)

    def remove(self, product_id: Any) -> bool:
        product_id = coerce_int(product_id, "product_id")
        before = len(self._entries)
        self._entries = [e for e in self._entries if e["product"]["id"] != product_id]
        self._persist()
        return len(self._entries) != before

    def clear(self) -> None:
        self._entries = []
        self._persist()

    # -------------------- reads --------------------

    @property
    def items(self) -> list[dict]:
        return [{"product": dict(e["product"]), "qty": e["qty"]} for e in self._entries]

    @property
    def total_entries(self) -> int:
        return len(self._entries)

    @property
    def total_quantity(self) -> int:
        return sum(e["qty"] for e in self._entries)

    def is_in_cart(self, product_id: Any) -> bool:
        return self._find(coerce_int(product_id, "product_id")) is not None

    def quantity_of(self, product_id: Any) -> int:
        entry = self._find(coerce_int(product_id, "product_id"))
        return entry["qty"] if entry else 0

    def to_order_items(self) -> list[dict]:
        """Line items in the shape the backend's create-order endpoint expects."""
        return [
            {"productId": e["product"]["id"], "quantity": e["qty"]}
            for e in self._entries
        ]

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "total_entries": self.total_entries,
            "total_quantity": self.total_quantity,
        }
