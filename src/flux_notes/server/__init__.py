"""MCP server for Flux Notes."""
