"""
immich-stacker
==============

Groups Immich assets into stacks (a primary image plus its burst or variant
siblings) by matching file name patterns.
"""

__version__ = "1.5.0"
