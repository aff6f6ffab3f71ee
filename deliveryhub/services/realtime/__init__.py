"""In-process real-time hub and topic naming."""
