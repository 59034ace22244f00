"""Table catalog layer.

This module owns the schema registry, schema inference, and the
crawlers that discover tables in the landing and clean zones.
"""
