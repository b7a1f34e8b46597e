"""Ticket capacity allocation and check-in services."""
