"""Scheduled compliance and notification dispatch engine for a residential community platform."""
