"""Clients for the external APIs the operator talks to."""
