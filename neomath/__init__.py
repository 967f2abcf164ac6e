"""neomath - math engine abstraction, sparse kernels and a cross-backend test harness."""

__version__ = "0.1.0"
