"""LLKB - Lessons Learned Knowledge Base.

A file-based, confidence-scored store of lessons and reusable components
that repeated test-generation runs consult before writing new code.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
