"""MCP stdio server for Rishvan."""
