"""Pure domain types for the IPR kernel.  No I/O."""
