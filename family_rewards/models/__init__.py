"""Pydantic models for persisted state, request bodies and family configuration."""
