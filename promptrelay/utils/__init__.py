"""Utility helpers: logging and request-id generation."""
