"""Simulated RPC network, key/value message and model types, and MapReduce."""

__version__ = "0.1.0"