from .permissions import PartyLike, TokenPermissionLayer

__all__ = ["TokenPermissionLayer", "PartyLike"]
