"""HTTP API for the taskboard core."""
