"""Object event sources.

This module delivers object-created notifications to the crawler
with at-least-once semantics.
"""
