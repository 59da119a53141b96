"""ChatVibes HTTP API."""
