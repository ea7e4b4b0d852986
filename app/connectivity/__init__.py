"""
AEGIS Connectivity Module
Online/offline tracking with transition notifications.
"""
from .monitor import ConnectivityMonitor
from .sources import ConnectivitySource, ManualConnectivitySource, ProbeConnectivitySource

__all__ = [
    "ConnectivityMonitor",
    "ConnectivitySource",
    "ManualConnectivitySource",
    "ProbeConnectivitySource",
]
