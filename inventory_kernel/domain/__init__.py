"""Pure domain values: clock, lifecycle workflow, adjustment types, DTOs."""
