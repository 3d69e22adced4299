"""Booking API access and shared data structures."""
