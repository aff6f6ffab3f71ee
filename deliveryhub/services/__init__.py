"""Domain services: orders, users, real-time hub and notifications."""
