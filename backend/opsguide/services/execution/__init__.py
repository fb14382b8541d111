"""Step execution against the downstream operational API."""
