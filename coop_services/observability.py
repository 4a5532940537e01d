"""
Observability hooks for the coordination facade.

Emits structured log events for operators and dashboards:
- Rejections: operation_rejected (with the error code for aggregation).
- Contention: capacity_rejected, stock_contention (typed errors that a
  retry may resolve).
- Inconsistency: stock_restore_failed (cancelled order whose stock was
  not given back; needs out-of-band reconciliation).
- Latency: operation_completed with duration_ms.

All events carry a stable ``observability_event`` field so log
aggregators can build metrics from them.

Usage:
    from coop_services.observability import log_stock_restore_failed
    log_stock_restore_failed(order_id=str(order.id), product_id=str(pid), quantity=5)
"""

from __future__ import annotations

from typing import Any

from coop_kernel.exceptions import (
    CapacityExceededError,
    CoopKernelError,
    InsufficientStockError,
)
from coop_kernel.logging_config import get_logger

logger = get_logger("services.observability")

# Standard event names for filtering in log pipelines
EVENT_OPERATION_COMPLETED = "operation_completed"
EVENT_OPERATION_REJECTED = "operation_rejected"
EVENT_CAPACITY_REJECTED = "capacity_rejected"
EVENT_STOCK_CONTENTION = "stock_contention"
EVENT_STOCK_RESTORE_FAILED = "stock_restore_failed"


def log_operation_completed(*, operation: str, duration_ms: float | None = None, **extra: Any) -> None:
    payload: dict[str, Any] = {
        "observability_event": EVENT_OPERATION_COMPLETED,
        "operation": operation,
        **extra,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    logger.debug("operation_completed", extra=payload)


def log_operation_rejected(*, operation: str, exc: CoopKernelError, **extra: Any) -> None:
    """
    Log a typed rejection.  Capacity and stock refusals also emit their
    contention event so retries can be measured separately.
    """
    payload: dict[str, Any] = {
        "observability_event": EVENT_OPERATION_REJECTED,
        "operation": operation,
        "exc_code": exc.code,
        "exc_type": type(exc).__name__,
        **extra,
    }
    logger.info("operation_rejected", extra=payload)

    if isinstance(exc, CapacityExceededError):
        log_capacity_rejected(
            bulk_order_id=exc.bulk_order_id,
            requested=exc.requested,
            remaining=exc.remaining,
        )
    elif isinstance(exc, InsufficientStockError):
        log_stock_contention(
            product_id=exc.product_id,
            requested=exc.requested,
            available=exc.available,
        )


def log_capacity_rejected(*, bulk_order_id: str, requested: int, remaining: int, **extra: Any) -> None:
    logger.info(
        "bulk_order_capacity_rejected",
        extra={
            "observability_event": EVENT_CAPACITY_REJECTED,
            "bulk_order_id": bulk_order_id,
            "requested": requested,
            "remaining": remaining,
            **extra,
        },
    )


def log_stock_contention(*, product_id: str, requested: int, available: int, **extra: Any) -> None:
    logger.info(
        "product_stock_contention",
        extra={
            "observability_event": EVENT_STOCK_CONTENTION,
            "product_id": product_id,
            "requested": requested,
            "available": available,
            **extra,
        },
    )


def log_stock_restore_failed(*, order_id: str, product_id: str, quantity: int, **extra: Any) -> None:
    """
    A cancellation went through but the stock it held was not restored.

    WARNING level: an operator has to reconcile the product's stock.
    """
    logger.warning(
        "order_stock_restore_failed",
        extra={
            "observability_event": EVENT_STOCK_RESTORE_FAILED,
            "order_id": order_id,
            "product_id": product_id,
            "quantity": quantity,
            **extra,
        },
    )
