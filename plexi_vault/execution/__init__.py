"""
Execution module.

Contains hedge order sizing, instrument precision rules and order orchestration.

ARCHITECTURE:
    PositionOpener (single entry point for hedge orders)
        │
        ├── compute_order_parameters (slippage, tick and precision rules)
        │       │
        │       └── InstrumentRegistry (venue meta, cached)
        │
        └── OrderGateway / VenueReader (injected venue client)
"""

from plexi_vault.execution.hedge_sizer import compute_order_parameters
from plexi_vault.execution.instrument_specs import InstrumentMeta, InstrumentRegistry
from plexi_vault.execution.position_opener import PositionOpener

__all__ = [
    "compute_order_parameters",
    "InstrumentMeta",
    "InstrumentRegistry",
    "PositionOpener",
]
