"""State layer.

Holds what the feed told us about each aircraft under the current
subscriptions.
"""
