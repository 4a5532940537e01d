"""
CatalogService -- read contract and stock counter for products.

Responsibility:
    Implements the two catalog collaborators the engine consumes:

    * ``CatalogReader`` -- ``get_product(id)`` returning a frozen
      ``ProductSnapshot`` (price, tier schedule, stock, unit type, active).
    * ``StockReservation`` -- ``decrement(id, qty)`` and ``restore(id, qty)``
      on the live stock counter.

Architecture position:
    Kernel > Services -- imperative shell.
    Used by BulkOrderService (point-in-time availability at creation) and
    OrderService (decrement on confirm, restore on cancel).

Invariants enforced:
    - Non-negative stock: decrement is ONE conditional UPDATE
      (``SET stock = stock - q WHERE id = :id AND stock >= q``).  The check
      and the write cannot be separated by a concurrent confirm; when the
      UPDATE matches no row nothing was written.
    - Catalog fields other than stock_quantity are never written here.

Failure modes:
    - ProductNotFoundError: product id unknown.
    - InsufficientStockError: decrement would go negative (reports the
      available quantity observed after the refusal).
    - restore() never raises for a missing product or a database error;
      it returns False so cancellation can complete and the caller can
      surface the inconsistency.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coop_kernel.domain.clock import Clock
from coop_kernel.domain.dtos import ProductSnapshot
from coop_kernel.exceptions import (
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
)
from coop_kernel.logging_config import get_logger
from coop_kernel.models.product import Product
from coop_kernel.services.base import BaseService

logger = get_logger("services.catalog")


class CatalogReader(ABC):
    """Read-only product contract consumed by the pricing and order logic."""

    @abstractmethod
    def get_product(self, product_id: UUID) -> ProductSnapshot:
        """
        Raises:
            ProductNotFoundError: if the product does not exist.
        """
        ...

    def get_active_product(self, product_id: UUID) -> ProductSnapshot:
        """Like get_product, but an inactive product counts as absent."""
        snapshot = self.get_product(product_id)
        if not snapshot.is_active:
            raise ProductNotFoundError(str(product_id), "product is not available for purchase")
        return snapshot

    def check_available(self, product_id: UUID, quantity: int) -> ProductSnapshot:
        """
        Point-in-time availability check.  Reserves nothing.

        Raises:
            ProductNotFoundError: unknown or inactive product.
            InsufficientStockError: stock below ``quantity`` right now.
        """
        snapshot = self.get_active_product(product_id)
        if snapshot.stock_quantity < quantity:
            raise InsufficientStockError(str(product_id), snapshot.stock_quantity, quantity)
        return snapshot


class StockReservation(ABC):
    """Atomic stock counter operations."""

    @abstractmethod
    def decrement(self, product_id: UUID, quantity: int) -> int:
        """Take ``quantity`` units; returns the remaining stock."""
        ...

    @abstractmethod
    def restore(self, product_id: UUID, quantity: int) -> bool:
        """Give back ``quantity`` units; False if the restore could not be applied."""
        ...


class CatalogService(BaseService[Product], CatalogReader, StockReservation):
    """
    SQL-backed catalog reader and stock reservation.

    Contract:
        Flush-only; the caller's unit of work commits the stock change
        together with the order status change that caused it.

    Guarantees:
        - Two concurrent decrements on one product can never both succeed
          if together they exceed the stock.
        - Operations on different products touch different rows and do not
          serialize against each other on PostgreSQL.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # -------------------------------------------------------------------
    # CatalogReader
    # -------------------------------------------------------------------

    def get_product(self, product_id: UUID) -> ProductSnapshot:
        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return ProductSnapshot.from_model(product)

    # -------------------------------------------------------------------
    # StockReservation
    # -------------------------------------------------------------------

    def decrement(self, product_id: UUID, quantity: int) -> int:
        if quantity <= 0:
            raise ValidationError("quantity", "stock decrement must be positive")

        # INVARIANT: stock >= 0 -- check and write are one statement.
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            snapshot = self.get_product(product_id)
            logger.info(
                "stock_insufficient",
                extra={
                    "product_id": str(product_id),
                    "available": snapshot.stock_quantity,
                    "requested": quantity,
                },
            )
            raise InsufficientStockError(str(product_id), snapshot.stock_quantity, quantity)

        remaining = self.get_product(product_id).stock_quantity
        logger.info(
            "stock_decremented",
            extra={
                "product_id": str(product_id),
                "quantity": quantity,
                "remaining": remaining,
            },
        )
        return remaining

    def restore(self, product_id: UUID, quantity: int) -> bool:
        # Savepoint: a failed restore must not poison the caller's transaction.
        savepoint = self.session.begin_nested()
        try:
            result = self.session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_quantity=Product.stock_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            restored = result.rowcount == 1
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            logger.warning(
                "stock_restore_error",
                extra={"product_id": str(product_id), "quantity": quantity},
                exc_info=True,
            )
            return False

        if restored:
            logger.info(
                "stock_restored",
                extra={"product_id": str(product_id), "quantity": quantity},
            )
        else:
            logger.warning(
                "stock_restore_missing_product",
                extra={"product_id": str(product_id), "quantity": quantity},
            )
        return restored
