"""Lake pipeline orchestration.

This module wires event delivery, crawling, staleness, and
materialization into runnable cycles and the SDK client.
"""
