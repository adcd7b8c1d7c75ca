from stock.services.base_service import ForbiddenError, UnauthorizedError


class AccessService:
    """Role and site checks shared by the stock and admin endpoints."""

    @staticmethod
    def require_actor(actor):
        if actor is None or not getattr(actor, 'is_authenticated', False):
            raise UnauthorizedError()
        return actor

    @classmethod
    def require_admin(cls, actor):
        cls.require_actor(actor)
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can manage users")

    @classmethod
    def require_roles(cls, actor, roles, action='perform this action'):
        cls.require_actor(actor)
        if actor.role not in roles:
            raise ForbiddenError(
                f"Role {actor.role} cannot {action}",
                {'role': actor.role, 'allowed_roles': list(roles)}
            )

    @classmethod
    def require_approver(cls, actor):
        cls.require_actor(actor)
        if not actor.can_approve:
            raise ForbiddenError(
                f"Role {actor.role} cannot approve or reject documents",
                {'role': actor.role}
            )

    @classmethod
    def require_site_access(cls, actor, site_id):
        cls.require_actor(actor)
        if actor.is_multi_site or site_id is None:
            return
        if str(site_id) != str(actor.associated_site_id):
            raise ForbiddenError(
                "You do not have access to this site",
                {'site': str(site_id)}
            )

    @classmethod
    def scope_queryset(cls, actor, queryset, site_lookup):
        """Limit ``queryset`` to the actor's site unless the role spans sites."""
        cls.require_actor(actor)
        if actor.is_multi_site:
            return queryset
        if actor.associated_site_id is None:
            return queryset.none()
        return queryset.filter(**{site_lookup: actor.associated_site_id})
