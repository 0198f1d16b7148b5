"""TenderDesk: tender tracking pipeline and daily time-tracking snapshots."""

__version__ = "0.1.0"
__author__ = "TenderDesk Team"

__all__ = ["__version__", "__author__"]
