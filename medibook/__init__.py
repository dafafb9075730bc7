"""
MediBook

FastAPI service for booking healthcare appointments, with doctor availability,
cancellation rules, appointment status tracking and medical records.
"""

__version__ = "1.0.0"
