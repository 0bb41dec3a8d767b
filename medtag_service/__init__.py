"""MedTag responder service: patient tag resolution and AI triage."""

__version__ = "0.1.0"
