"""Allocentra: deterministic, explainable allocation of budget and resource pools."""

__version__ = "0.1.0"
