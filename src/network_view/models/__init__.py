"""
Pydantic models for Network View.
"""
from .common import BasePydanticModel
from .discovery import DiscoveryEvent, InterfaceDescriptor, ServiceRecord

__all__ = [
    "BasePydanticModel",
    "DiscoveryEvent",
    "InterfaceDescriptor",
    "ServiceRecord",
]
