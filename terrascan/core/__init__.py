"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Container names and shared literals
- exceptions: Pipeline exception taxonomy
- ingress: Transport helpers for Functions entrypoints
- retry: Per-stage retry with exponential backoff
"""
