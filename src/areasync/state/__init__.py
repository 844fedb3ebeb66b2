"""State layer.

Bounded histories, the remote-session registry, and the pure policy
functions that decide how incoming presence data is merged, eased and
evicted.
"""
