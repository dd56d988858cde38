"""HTTP and WebSocket surface for Civic Core."""
