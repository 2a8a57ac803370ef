"""Connectivity observation."""

from homekeep.network.monitor import NetworkMonitor, NetworkState
from homekeep.network.probe import ConnectivityProbe

__all__ = ["ConnectivityProbe", "NetworkMonitor", "NetworkState"]
