"""
bootpack - repackage compiled Java archives into self-runnable artifacts.

Subpackages:
- bootpack.core: errors, logging, settings, filesystem transfer primitives
- bootpack.packaging: the archive repackaging engine and its building blocks
- bootpack.ops: result-envelope operations for CLI/SDK callers
- bootpack.cli: the ``bootpack`` command line
"""

__version__ = "0.4.0"
