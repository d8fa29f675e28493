"""
Core package for the imgbatch batch image transformer.
The CLI entry point remains imgbatch.py.
"""

__all__ = [
    "cancellation",
    "config",
    "constants",
    "discovery",
    "executor",
    "imaging",
    "logging_utils",
    "operations",
    "pipeline",
    "pool",
    "state",
]
