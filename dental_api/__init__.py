"""Dental office back-office API: scheduling settings, bookings and slot availability."""
