"""Derived view and named query layer.

This module tracks view dependencies, staleness, and rebuild order,
and stores reusable named queries validated against the catalog.
"""
