"""Rate history package.

Modules
-------
store — ``TimeSeriesStore``: gap de-duplication, bounded retention and
        per-pair serialized persistence of ``SeriesDocument`` objects
"""
