import logging

from django.conf import settings
from django.shortcuts import redirect, render

from .models import FarmUser
from .permissions import get_required_permissions, has_any_permission

logger = logging.getLogger(__name__)

SESSION_KEY = 'farm_user_id'


class CurrentUserMiddleware:
    """Attaches the demo user picked on the choose-user page as ``request.farm_user``.

    Falls back to HERDBOOK_DEFAULT_USER_EMAIL when the session holds no choice.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.farm_user = self.resolve_user(request)
        return self.get_response(request)

    def resolve_user(self, request):
        users = FarmUser.objects.select_related('tenant')
        user_id = request.session.get(SESSION_KEY)
        if user_id:
            user = users.filter(pk=user_id).first()
            if user:
                return user
            # Stale id, e.g. after reseeding
            del request.session[SESSION_KEY]

        default_email = getattr(settings, 'HERDBOOK_DEFAULT_USER_EMAIL', '')
        if default_email:
            return users.filter(email=default_email).first()
        return None


class PagePermissionMiddleware:
    """Gates pages by the permission map in ``livestock.permissions``.

    Set HERDBOOK_ENFORCE_PAGE_PERMISSIONS=0 in the environment to disable.
    """

    EXEMPT_URLS = ['/choose-user/', '/admin/', '/static/']

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if not getattr(settings, 'HERDBOOK_ENFORCE_PAGE_PERMISSIONS', True):
            return self.get_response(request)

        if any(request.path.startswith(url) for url in self.EXEMPT_URLS):
            return self.get_response(request)

        user = getattr(request, 'farm_user', None)
        if user is None:
            return redirect('choose_user')

        required = get_required_permissions(request.path)
        if required and not has_any_permission(user, required):
            logger.warning("Denied %s to %s (needs one of %s)", request.path, user.email, ', '.join(required))
            return render(request, 'livestock/forbidden.html', {
                'farm_user': user,
                'required_permissions': required,
            }, status=403)

        return self.get_response(request)
