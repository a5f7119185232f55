"""
Target routing for the gateway.
"""

from .target_resolver import (
    TargetRegistry,
    build_backend_url,
    extract_relative_path,
    match_target_pattern,
)

__all__ = [
    "TargetRegistry",
    "build_backend_url",
    "extract_relative_path",
    "match_target_pattern",
]
