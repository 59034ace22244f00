"""Columnar materialization layer.

This module converts row-format landing tables into parquet tables
in the clean zone and tracks conversion jobs.
"""
