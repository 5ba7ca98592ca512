"""Relay between local clients and the OpenAI Realtime API."""
