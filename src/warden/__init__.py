"""Warden — reputation and escalation engine.

Turns a stream of per-user behavioural signals into a bounded, decaying
trust score per user and graduated enforcement actions driven by watch
rules with multi-stage escalation.
"""

__version__ = "0.1.0"
