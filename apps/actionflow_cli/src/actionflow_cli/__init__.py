"""Terminal runner for actionflow scripts."""
