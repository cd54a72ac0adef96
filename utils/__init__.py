"""Workflow services, AI integration, and shared helpers."""
