"""Appointment booking: provider, type, date and time selection with booking and reschedule."""
