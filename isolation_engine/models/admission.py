"""Admission-control data models."""

from dataclasses import dataclass


@dataclass
class AdmissionStats:
    """Point-in-time view of the admission controller."""

    running: int
    queued: int
    max_concurrency: int
