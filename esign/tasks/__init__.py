"""Background tasks for the e-signature workflow."""
