# Overview: In-memory order cart; quantity rules against effective available stock.

"""
Order cart rules

- The cart never writes the ledger. It only reads stock through stock_reader.
- "Effective available" stock: when editing a sale whose items were already
  reserved, the ledger shows stock AFTER the reservation, so the line's own
  quantity is added back before comparing.
- The caller sends to_item_inputs() to sales_service.set_sale_items; the
  server re-validates everything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from ..money import ZERO, line_total, round_cents, sum_money, to_decimal

StockReader = Callable[[int, int], int]


@dataclass(frozen=True)
class CartProduct:
    id: int
    name: str
    price: Decimal
    inventory_activated: bool = False
    allow_negative_sale: bool = False

    @classmethod
    def from_model(cls, product, *, inventory_activated: bool | None = None) -> "CartProduct":
        """Build from a Product row; inventory_activated overrides the catalog flag (branch override)."""
        return cls(
            id=product.id,
            name=product.name,
            price=to_decimal(product.price),
            inventory_activated=(
                product.inventory_activated if inventory_activated is None else inventory_activated
            ),
            allow_negative_sale=bool(product.allow_negative_sale),
        )


@dataclass
class CartLine:
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    notes: Optional[str] = None
    inventory_activated: bool = False
    allow_negative_sale: bool = False

    @property
    def total_price(self) -> Decimal:
        return line_total(self.quantity, self.unit_price)

    @property
    def limited_by_stock(self) -> bool:
        return self.inventory_activated and not self.allow_negative_sale


def effective_available(available: int, current_quantity: int) -> int:
    """
    Stock the line may grow to.

    available < current_quantity means the line's quantity was already taken
    out of the ledger (editing a saved sale), so it is counted back.
    """
    is_editing_existing = available < current_quantity
    if is_editing_existing:
        return available + current_quantity
    return available


def parse_quantity_input(raw) -> int | None:
    """Free-text quantity from an input box; anything non-numeric is ignored (None)."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if not text or not text.lstrip("-").isdigit():
        return None
    return int(text)


class OrderCart:
    def __init__(
        self,
        branch_id: int,
        stock_reader: StockReader,
        check_inventory: bool = True,
        items: list[CartLine] | None = None,
    ):
        self.branch_id = branch_id
        self.stock_reader = stock_reader
        self.check_inventory = check_inventory
        self.lines: list[CartLine] = list(items or [])

    @classmethod
    def from_sale(cls, sale, items, stock_reader: StockReader, products: dict | None = None) -> "OrderCart":
        """
        Cart for editing a persisted sale.

        products maps product_id -> CartProduct and carries the inventory flags;
        lines without an entry are treated as untracked.
        """
        products = products or {}
        lines = []
        for item in items:
            product = products.get(item.product_id)
            lines.append(CartLine(
                product_id=item.product_id,
                product_name=item.product_name,
                unit_price=to_decimal(item.unit_price),
                quantity=int(item.quantity),
                notes=item.notes,
                inventory_activated=bool(product and product.inventory_activated),
                allow_negative_sale=bool(product and product.allow_negative_sale),
            ))
        return cls(sale.branch_id, stock_reader, items=lines)

    # -- lookups ---------------------------------------------------------

    def find_line(self, product_id: int) -> CartLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def _available(self, product_id: int) -> int:
        return int(self.stock_reader(self.branch_id, product_id))

    def _is_tracked(self, line_or_product) -> bool:
        return self.check_inventory and bool(line_or_product.inventory_activated)

    # -- mutations -------------------------------------------------------

    def add_product(self, product: CartProduct) -> CartLine | None:
        """
        Add one unit of product.

        Returns the affected line, or None when the add was refused for stock.
        """
        line = self.find_line(product.id)

        if not self._is_tracked(product) or product.allow_negative_sale:
            if line is not None:
                line.quantity += 1
                return line
            return self._append(product)

        available = self._available(product.id)
        if line is None:
            if available <= 0:
                return None
            return self._append(product)

        if line.quantity + 1 <= effective_available(available, line.quantity):
            line.quantity += 1
            return line
        return None

    def _append(self, product: CartProduct) -> CartLine:
        line = CartLine(
            product_id=product.id,
            product_name=product.name,
            unit_price=round_cents(product.price),
            quantity=1,
            inventory_activated=product.inventory_activated,
            allow_negative_sale=product.allow_negative_sale,
        )
        self.lines.append(line)
        return line

    def update_quantity(self, product_id: int, quantity: int) -> CartLine | None:
        line = self.find_line(product_id)
        if line is None:
            return None
        if quantity <= 0:
            self.remove_item(product_id)
            return None

        quantity = max(1, quantity)
        if self._is_tracked(line) and not line.allow_negative_sale:
            limit = effective_available(self._available(product_id), line.quantity)
            if limit <= 0:
                self.remove_item(product_id)
                return None
            quantity = min(quantity, limit)

        line.quantity = quantity
        return line

    def remove_item(self, product_id: int) -> None:
        self.lines = [line for line in self.lines if line.product_id != product_id]

    def update_item_name(self, product_id: int, name: str) -> None:
        line = self.find_line(product_id)
        if line is not None:
            line.product_name = name

    def update_item_price(self, product_id: int, price) -> None:
        line = self.find_line(product_id)
        if line is None:
            return
        try:
            value = to_decimal(price)
        except ArithmeticError:
            return
        if not value.is_finite():
            return
        line.unit_price = round_cents(max(value, ZERO))

    def update_item_notes(self, product_id: int, notes: str | None) -> None:
        line = self.find_line(product_id)
        if line is not None:
            line.notes = notes or None

    def clear(self) -> None:
        self.lines = []

    # -- checks / output -------------------------------------------------

    def validate_stock(self) -> list[str]:
        errors = []
        if not self.check_inventory:
            return errors
        for line in self.lines:
            if not line.limited_by_stock:
                continue
            available = self._available(line.product_id)
            limit = effective_available(available, line.quantity)
            if line.quantity > limit:
                errors.append(
                    f"{line.product_name}: requested {line.quantity}, available {max(limit, 0)}"
                )
        return errors

    @property
    def total(self) -> Decimal:
        return sum_money(line.total_price for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_item_inputs(self) -> list[dict]:
        """Whole-list snapshot for set_sale_items."""
        return [
            {
                "product_id": line.product_id,
                "product_name": line.product_name,
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
                "notes": line.notes,
            }
            for line in self.lines
        ]


@dataclass
class SaveCoalescer:
    """
    Caller-owned write coalescing: flush a changed snapshot at most once per
    min_interval seconds. Clocks are passed in so callers and tests control time.
    """
    min_interval: float
    last_snapshot: list | None = None
    last_flush_at: float | None = None
    _pending: bool = field(default=False, repr=False)

    def should_flush(self, snapshot: list, now: float) -> bool:
        if snapshot == self.last_snapshot:
            self._pending = False
            return False
        self._pending = True
        if self.last_flush_at is None:
            return True
        return now - self.last_flush_at >= self.min_interval

    def mark_flushed(self, snapshot: list, now: float) -> None:
        self.last_snapshot = [dict(item) for item in snapshot]
        self.last_flush_at = now
        self._pending = False

    @property
    def has_pending_changes(self) -> bool:
        return self._pending
