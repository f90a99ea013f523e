"""
Incident logging package for the Gateway.
"""

from .incident_log import Incident, IncidentLog, IncidentType, DEFAULT_CAPACITY

__all__ = ["DEFAULT_CAPACITY", "Incident", "IncidentLog", "IncidentType"]
