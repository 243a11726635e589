"""FX Favorability Tracker — rate history retention and buyer/seller scoring."""

__version__ = "0.1.0"
