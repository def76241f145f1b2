"""Workflow event aggregation and analytics rollup service."""
