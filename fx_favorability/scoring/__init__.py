"""Favorability scoring package.

Modules
-------
favorability — percentile rank, robust z-score, EMA momentum and labels
               combined into a ``FavorabilityScore`` by ``FavorabilityEngine``
"""
