"""Delinquency tracking: per-household arrears aging, reminders and suspension."""
