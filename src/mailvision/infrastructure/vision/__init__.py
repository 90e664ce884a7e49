"""Image analysis through the Azure Computer Vision REST API."""

from mailvision.infrastructure.vision.azure_client import AzureVisionAnalyzer

__all__ = ["AzureVisionAnalyzer"]
