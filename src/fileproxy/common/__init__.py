"""Shared building blocks for the file proxy service."""
