"""Durable Functions orchestrators.

- ingestion: search → bounded fan-out of preprocess_scene → summary
- analysis: run one analysis job to a terminal state
"""
