"""Bridge capabilities operating on the registry view."""
