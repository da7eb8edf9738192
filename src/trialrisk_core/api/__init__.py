"""HTTP API for the trial risk engine."""
