"""Translation of domain events into real-time notifications."""
