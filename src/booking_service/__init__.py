"""Task booking service: negotiation, payment, execution tracking and real-time rooms."""

__version__ = "0.1.0"
