"""scheduling — Periodic prediction refresh and weather model retraining."""
