"""TerraScan satellite imagery analytics pipeline.

Azure Functions workflow that discovers scenes in a STAC catalogue,
preprocesses them into analysis-ready cloud-optimised GeoTIFFs,
records them in a metadata catalog, and runs spectral-index,
change-detection, and inference-backed analysis jobs against them.
"""

__version__ = "0.1.0"
