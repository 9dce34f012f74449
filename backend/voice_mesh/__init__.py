"""Audio-only full-mesh voice sessions over a signaling relay."""
