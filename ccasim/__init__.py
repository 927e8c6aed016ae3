"""Simulation of Arm CCA worlds, granule protection tables, realms and TrustZone memory isolation."""

__version__ = "0.1.0"