"""
Domain layer for the Gateway Service.

Holds the request pipeline, the catalog of secure resources and the clock
shared by the time-based stores. Nothing here knows about HTTP transport.
"""

from .clock import Clock, epoch_millis
from .pipeline import GatewayHandler, GatewayResult, InboundRequest, RequestState
from .resources import RESOURCES, SecureResource, get_resource

__all__ = [
    "Clock",
    "epoch_millis",
    "GatewayHandler",
    "GatewayResult",
    "InboundRequest",
    "RequestState",
    "RESOURCES",
    "SecureResource",
    "get_resource",
]
