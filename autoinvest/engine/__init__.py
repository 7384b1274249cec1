"""Pure planning engines: recurrence, allocation and DRIP resolution."""
