"""Health resources for liveness and readiness checks.

Usage
-----
Import health resources for route registration::

    from autotest.api.health.resources import HealthResource, ReadyResource
"""
