"""Transit Events: GTFS-Realtime ingestion and denormalization service."""
