"""
FanZone - Property-Based Testing Suite

Property-based testing using Hypothesis to discover edge cases and invariants
in service resolution, error classification and event delivery.
"""
