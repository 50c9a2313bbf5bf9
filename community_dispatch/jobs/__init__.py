"""Background jobs owned by the application lifespan.

``JobScheduler`` runs three independent timers on the event loop:

- delinquency sweep: once at start, then daily at ``DELINQUENCY_SWEEP_HOUR``
- publication release: every ``PUBLICATION_POLL_INTERVAL_S`` seconds
- notification maintenance: daily at ``MAINTENANCE_SWEEP_HOUR``
"""
