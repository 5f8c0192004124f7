"""lockstep command-line interface."""
