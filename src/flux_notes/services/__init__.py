"""Service layer for Flux Notes."""
