"""Data models for Flux Notes."""
