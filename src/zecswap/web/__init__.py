"""Web layer: request and response contracts for the HTTP API."""
