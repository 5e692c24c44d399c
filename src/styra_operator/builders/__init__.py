"""Builders turning resource specs into API payloads."""
