"""Runtime primitives — clock and cancellation, subprocess execution, retry."""
