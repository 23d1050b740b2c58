"""Adaptive browser automation for dealership CRM tasks"""

__version__ = "0.1.0"
