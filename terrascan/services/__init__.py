"""Clients for external services.

- InferenceClient: cloud masking, object detection and classification over HTTP
"""

from terrascan.services.inference import InferenceClient, InferenceError, get_inference_client

__all__ = ["InferenceClient", "InferenceError", "get_inference_client"]
