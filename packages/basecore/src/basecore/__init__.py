"""
Basecore - shared infrastructure (settings, logging, redis) for
interventions-core services.
"""
