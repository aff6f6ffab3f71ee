"""DeliveryHub: delivery order lifecycle and real-time notification service."""

__version__ = "1.0.0"
