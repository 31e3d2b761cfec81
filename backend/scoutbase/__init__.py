"""
Scoutbase: identity resolution, provenance-aware merge and rating pipeline
for multi-source football player statistics.
"""

__version__ = "0.4.0"
