"""
Plexi vault engine: vault share accounting with delta hedging on a perp venue.
"""

__version__ = "0.1.0"
