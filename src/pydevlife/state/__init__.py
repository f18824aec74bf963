"""State/store layer.

This package is the single source of truth for how presence events and
sweeps turn into per-device connectivity state.
"""
