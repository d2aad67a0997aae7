"""GameHub HTTP and WebSocket API."""
