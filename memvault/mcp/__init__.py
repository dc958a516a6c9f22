"""MCP server exposing memvault's similarity, chunking and backup checks."""
