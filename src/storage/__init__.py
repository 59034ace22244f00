"""Object storage layer.

This module provides the put/get/list/delete collaborator used by
the crawler and materializer for both lake zones.
"""
