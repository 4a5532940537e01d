"""Pure domain layer: pricing, order lifecycle, clock, DTOs."""
