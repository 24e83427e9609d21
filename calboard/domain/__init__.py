"""Aggregation domain: merge engine, views, result cache and presentation filtering."""
