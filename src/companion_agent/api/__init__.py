"""HTTP and WebSocket surface of the companion agent."""
