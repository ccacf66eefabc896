"""Outbound WhatsApp delivery."""

from .service import DeliveryReceipt, OutboundDispatcher
from .transports import MetaCloudTransport, Transport, WahaTransport, build_transport

__all__ = [
    "DeliveryReceipt",
    "MetaCloudTransport",
    "OutboundDispatcher",
    "Transport",
    "WahaTransport",
    "build_transport",
]
