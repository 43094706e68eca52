"""HealthNexus backend package."""
