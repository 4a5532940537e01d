"""
Module: coop_kernel.models.product
Responsibility: ORM persistence for the catalog rows the engine reads --
    price, tier schedule, unit type, active flag -- and the one column it
    writes: the live stock counter.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - stock_quantity >= 0 (ck_product_stock_non_negative).  The service
      layer decrements with a conditional UPDATE; the CHECK constraint is
      the backstop.

Failure modes:
    - IntegrityError if any write would take stock below zero.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Boolean, CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from coop_kernel.db.base import TrackedBase, UUIDString


class Product(TrackedBase):
    """
    A farm input offered by a seller.

    Contract:
        Catalog CRUD lives outside the engine.  The engine reads the pricing
        fields and moves ``stock_quantity`` through StockReservation only.

    Guarantees:
        - tier_schedule is a JSON object mapping minimum quantity (as a
          string key) to unit price (as a string), e.g. {"10": "90.00"}.
        - stock_quantity never goes negative.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
        Index("idx_product_seller", "seller_id"),
    )

    # Product owner; may update the status of orders placed against it
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # {"min_quantity": "price"}; unordered
    tier_schedule: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    stock_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # kg, litres, bags, ...
    unit_type: Mapped[str] = mapped_column(String(50), nullable=False, default="units")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product {self.name}: {self.stock_quantity} {self.unit_type}>"
