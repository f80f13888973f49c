"""
Session Tracer - observability for autonomous agent sessions

Turns the lifecycle event stream of an agent session into a structured
trace, then evaluates alerts and eval cases over it.
"""

__version__ = "0.1.0"
