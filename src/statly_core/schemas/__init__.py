"""Pydantic models for persisted rows."""
