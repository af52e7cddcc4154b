"""selsync — GitOps selective-sync convergence monitor and rollback orchestrator."""

__version__ = "0.1.0"
