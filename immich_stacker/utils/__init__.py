"""Logging and configuration file helpers."""
