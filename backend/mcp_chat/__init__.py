"""Backend for a chat front end that lets a model call tools on MCP servers."""
