"""Perkcycle - recurring credit card benefit cycles."""
