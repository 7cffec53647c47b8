"""Persona chat companion with a local memory-and-context engine."""
