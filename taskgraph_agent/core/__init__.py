"""Ambient runtime services: settings, logging and monitoring."""
