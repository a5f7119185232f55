"""
Backend forwarding for the gateway.
"""

from .forwarder import ProxyForwarder, build_upstream_headers, filter_response_headers

__all__ = [
    "ProxyForwarder",
    "build_upstream_headers",
    "filter_response_headers",
]
