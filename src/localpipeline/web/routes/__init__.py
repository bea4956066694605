"""Route modules for the webhook server."""
