"""Survey engine access (responses and question metadata)."""
