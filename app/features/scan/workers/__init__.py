"""
Background execution of scans.

Celery discovers app.features.scan.workers.tasks on its own; this package
does not import it eagerly because tasks depends on the orchestrator, which
in turn depends on the dispatcher defined here.
"""
