"""Organisation module — Department and User models, permission administration."""

from ops_portal.org.models import Department, User

__all__ = ["Department", "User"]
