"""Load Hunter match lifecycle and bid coordination engine."""
