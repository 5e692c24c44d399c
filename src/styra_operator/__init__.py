"""Kubernetes operator that reconciles Styra DAS and OCP control planes."""

__version__ = "0.1.0"
