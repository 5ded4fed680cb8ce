"""Shift reschedule and swap workflow service."""
