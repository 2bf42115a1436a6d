# tests/conftest.py
import os

# Set the TESTING environment variable before any tests are collected/run,
# so booking_engine.db.database uses an in-memory SQLite engine.
os.environ["TESTING"] = "True"
