"""Pydantic document models for student records, risk events and call signaling."""
