"""
Request bodies for the health and pool administration endpoints
"""

from pydantic import Field

from .common import CamelModel


class PoolResizeRequest(CamelModel):
    """New logical pool maximum; accepts maxConnections or max_connections"""
    max_connections: int = Field(..., ge=1)


class StressTestRequest(CamelModel):
    endpoint: str = "/health"
    requests: int = Field(50, ge=1, le=1000)
    concurrency: int = Field(10, ge=1, le=100)
