"""Webhook HTTP server: tracker payload parsing, routing and the FastAPI app."""
