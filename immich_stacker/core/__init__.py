"""
Core Stacking Logic
===================

This package contains the foundational logic of immich-stacker: the Immich
API client, the asset sources, run settings, and the stack assembly engine.
"""
