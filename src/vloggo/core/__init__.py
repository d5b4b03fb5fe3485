"""Formatting, file retention and notification engines."""
