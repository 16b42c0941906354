"""Repository health dashboard: metric snapshots and side-by-side comparison."""

__version__ = "0.1.0"
