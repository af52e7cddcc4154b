"""Data models shared by the probe, watcher, change driver and cleanup layers.

- Status: typed snapshot of one controller-managed resource
- WatchTarget / PhaseResult: what is polled and what each phase reported
- ChangeRecord: the durable description of one applied change
- CleanupReport: per-step outcome of a compensating rollback
"""
