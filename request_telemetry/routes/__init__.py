"""
Flask Blueprints exposing the telemetry core's state.
"""

from .telemetry_bp import telemetry_bp

__all__ = ["telemetry_bp"]
