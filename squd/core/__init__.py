"""Core primitives: indicator mapping, health reduction, snapshot storage,
time alignment, correlation, comparison sessions and cohort aggregation.

Everything here except the snapshot store and the session manager is a pure
function of its inputs and is safe to call from any thread.
"""
