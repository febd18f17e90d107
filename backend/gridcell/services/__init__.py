"""Aggregation services."""
