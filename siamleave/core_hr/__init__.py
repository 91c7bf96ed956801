"""Core HR module — Position and Employee models."""

from siamleave.core_hr.models import Employee, Position

__all__ = ["Employee", "Position"]
