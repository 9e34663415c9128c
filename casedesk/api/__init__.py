from .app import create_app, get_current_user, CurrentUser
from .container import Container

__all__ = ["create_app", "get_current_user", "CurrentUser", "Container"]
