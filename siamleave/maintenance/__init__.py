"""Maintenance module — orphan detection, cleanup and scheduled jobs."""
