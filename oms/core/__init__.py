"""Core configuration for OMS."""
