"""Rate limiting adapters.

``SlidingWindowRateLimiter`` keeps no state of its own: every decision is made
by the admission routine inside the configured script store.
"""
