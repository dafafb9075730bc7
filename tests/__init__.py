"""
Test suite for MediBook.

Unit tests for the scheduling rules and API tests run against SQLite.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
