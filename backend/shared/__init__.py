"""Shared code for the Stream Notify API and worker."""
