"""Fan event log and the dashboard projections read from it."""
