"""Business logic for the booking service."""
