"""CareShift — shift scheduling, EVV and authorization consumption service."""
