"""Resource provider interface and implementations.

Classes:
    ResourceProvider: Abstract remote resource API
    AWSResourceProvider: EC2-backed provider
"""

from __future__ import annotations

from .aws import AWSResourceProvider
from .base import ResourceProvider

__all__ = ["AWSResourceProvider", "ResourceProvider"]
