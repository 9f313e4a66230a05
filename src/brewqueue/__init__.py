"""brewqueue: dynamic priority queue for routing drink orders to baristas."""

__version__ = "0.1.0"
