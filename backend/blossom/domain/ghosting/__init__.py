"""Ghosting detection, visibility decay and trust signals."""
