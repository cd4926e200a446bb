"""Opalflow: validated, ordered, halt-on-error execution of node workflows."""

__version__ = "1.0.0"
