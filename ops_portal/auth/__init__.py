"""Authentication and the permission model."""
