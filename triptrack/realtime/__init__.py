"""Realtime socket delivery."""

from triptrack.realtime.channel import RealtimeChannel, ReconnectSupervisor

__all__ = ["RealtimeChannel", "ReconnectSupervisor"]
