"""TLS configuration and contexts, node identity, rate limiting, timers and an asyncio HTTP server."""

__version__ = "0.1.0"