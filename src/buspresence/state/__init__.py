"""Publisher state machine and storage reclamation policy."""
