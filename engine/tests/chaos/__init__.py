"""
Downstream failure testing suite.

Tests controller behavior when the services it coordinates misbehave:
- Propagation failures (refused, timed out, non-2xx)
- Status queries against unhealthy or unhelpful services
- Scenarios running while services fail
"""
