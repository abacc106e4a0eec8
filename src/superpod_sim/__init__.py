"""Simulated DGX SuperPOD administration terminal."""

__version__ = "0.3.0"
