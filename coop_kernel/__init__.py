"""
Coop Kernel - cooperative bulk-purchase coordination engine.

Group members pledge quantities toward a shared wholesale order with:
- Tiered volume pricing fixed at creation
- A capacity-constrained participation ledger
- Bulk-order and individual-order lifecycles
- Atomic stock reservation on confirmation
"""

__version__ = "0.1.0"
