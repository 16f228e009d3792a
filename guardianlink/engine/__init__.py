"""
Risk engine.

Components:
- classifier: per-metric status bands and the conjunctive at-risk rule
- transitions: escalation / recovery detection with audit events
"""
