"""
Request processing for the gateway.

The pipeline composes key validation, target resolution, credit metering
and forwarding into a single request handler.
"""

from .pipeline import GatewayPipeline

__all__ = ["GatewayPipeline"]
