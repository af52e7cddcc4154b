"""Convergence watching — the two-phase detection/convergence state machine."""
