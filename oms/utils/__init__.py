"""Shared helpers: logging and UTC time handling."""
