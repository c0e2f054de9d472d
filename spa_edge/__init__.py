"""Edge server for a single-page application build and its client telemetry."""
