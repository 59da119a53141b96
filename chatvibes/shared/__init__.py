"""Shared persistence, models and errors for the ChatVibes backend."""
