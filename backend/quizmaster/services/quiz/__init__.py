"""Quiz domain services: scoring, session state, timers and event fan-out.

This package holds the quiz mechanics that HTTP routes and socket handlers
call into, keeping transport concerns out of the scoring and state rules.
"""
