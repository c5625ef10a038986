"""Session lifecycle and payment escrow engine."""
