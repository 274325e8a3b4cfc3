"""Soft nudges and escalated ghosting reminders."""
