"""HTTP and WebSocket surface of the DeliveryHub API."""
