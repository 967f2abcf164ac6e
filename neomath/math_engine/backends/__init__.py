"""Math engine backends.

The CPU backend is always importable. The TensorFlow GPU backend is imported
on demand by the engine manager so CPU-only runs do not load TensorFlow.
"""

from neomath.math_engine.backends.cpu import CpuMathEngine

__all__ = ["CpuMathEngine"]
