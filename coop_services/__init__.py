"""Outer service layer: the coordination facade and operator-facing observability."""

from coop_services.coordination import CoordinationService

__all__ = ["CoordinationService"]
