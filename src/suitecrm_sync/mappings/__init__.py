"""Field mapping and sync-log persistence."""
