from django.utils import timezone

from .models import Delegation, Permission

# Ordered: exact matches are checked first, then the first prefix that fits.
# A page needs at least one of the listed permissions.
PAGE_PERMISSIONS = [
    ('/', []),
    ('/animals/add/', ['create_animals']),
    ('/animals/', ['view_animals']),
    ('/api/animals/', ['view_animals']),
    ('/breeding/analytics/', ['view_operational_reports', 'create_breeding']),
    ('/breeding/', ['create_breeding', 'view_animals']),
    ('/hire-agreements/', ['create_breeding', 'view_financial_reports']),
    ('/external-farms/', ['create_breeding', 'view_animals']),
    ('/activities/', ['view_animals', 'create_general', 'create_feeding', 'create_health_check', 'create_breeding']),
    ('/sales/', ['view_financial_reports']),
    ('/expenses/', ['view_financial_reports']),
    ('/farms/', ['view_animals']),
    ('/tax/', ['manage_roles']),
    ('/inventory/', ['view_operational_reports', 'create_general']),
    ('/export/animals/', ['view_animals']),
    ('/export/', ['view_financial_reports']),
    ('/permissions/', ['manage_roles']),
    ('/role-templates/', ['manage_roles']),
    ('/roles/', ['manage_roles']),
    ('/users/', ['manage_users']),
    ('/delegations/', ['manage_users']),
    ('/audit-logs/', ['view_audit_logs']),
    ('/platform/', ['super_admin']),
]

ROLE_DISPLAY_NAMES = {
    'owner': 'Farm Owner',
    'super_admin': 'Super Administrator',
    'veterinarian': 'Veterinarian',
    'farm_manager': 'Farm Manager',
    'field_worker': 'Field Worker',
    'vet_tech': 'Veterinary Technician',
    'accountant': 'Accountant',
}

ROLE_HOMEPAGES = {
    'super_admin': 'admin_overview',
    'owner': 'dashboard',
    'veterinarian': 'animal_list',
    'vet_tech': 'animal_list',
    'farm_manager': 'animal_list',
    'field_worker': 'activity_list',
    'accountant': 'sales_list',
}

OWNER_ONLY = 'owner_only'
SUPER_ADMIN_ONLY = 'super_admin_only'

# Feature -> permissions that unlock it. Owners and super admins pass every
# permission-based feature; an empty tuple means owners and super admins only.
ROLE_FEATURES = {
    'view_animals': ('view_animals',),
    'create_animals': ('create_animals',),
    'edit_animals': ('edit_animals',),
    'delete_animals': OWNER_ONLY,
    'edit_health': ('edit_health',),
    'log_health_check': ('create_health_check',),
    'log_feeding': ('create_feeding', 'create_general'),
    'log_breeding': ('create_breeding',),
    'log_general_activity': ('create_general',),
    'log_castration': ('edit_health', 'create_health_check', 'create_general'),
    'schedule_castration': ('create_animals',),
    'view_breeding': ('create_breeding', 'view_animals'),
    'manage_breeding': ('create_breeding',),
    'view_breeding_analytics': ('view_operational_reports', 'create_breeding'),
    'view_hire_agreements': ('create_breeding', 'view_financial_reports'),
    'manage_hire_agreements': ('create_breeding',),
    'record_hire_payments': ('create_breeding', 'view_financial_reports'),
    'view_lineage': ('view_animals',),
    'view_financials': ('view_financial_reports',),
    'record_sales': ('view_financial_reports',),
    'record_expenses': ('view_financial_reports',),
    'view_inventory': ('view_operational_reports', 'create_general'),
    'view_subscriptions': (),
    'manage_farms': (),
    'manage_tax_rates': ('manage_roles',),
    'manage_users': ('manage_users',),
    'manage_roles': ('manage_roles',),
    'view_audit_logs': ('view_audit_logs',),
    'view_operational_reports': ('view_operational_reports',),
    'super_admin': SUPER_ADMIN_ONLY,
}


def _role_permission_names(user):
    return set(
        Permission.objects.filter(roles__users=user).values_list('name', flat=True)
    )


def effective_permissions(user, at=None):
    """Permission names the user holds through roles and active delegations."""
    if user is None:
        return set()
    at = at or timezone.now()
    names = _role_permission_names(user)

    delegations = Delegation.objects.filter(
        delegate=user, status='active', start_date__lte=at, end_date__gte=at,
    ).select_related('delegator', 'delegated_role')
    for delegation in delegations:
        if delegation.delegation_type == 'permission':
            names.update(delegation.delegated_permissions.values_list('name', flat=True))
        elif delegation.delegation_type == 'role' and delegation.delegated_role:
            names.update(delegation.delegated_role.permissions.values_list('name', flat=True))
        elif delegation.delegation_type == 'full_access':
            delegator = delegation.delegator
            if delegator.is_super_admin or delegator.is_owner:
                names.update(Permission.objects.values_list('name', flat=True))
            else:
                names.update(_role_permission_names(delegator))
    return names


def _is_privileged(user, name):
    if name == 'super_admin':
        return user.is_super_admin
    return user.is_super_admin or user.is_owner


def has_permission(user, name, permissions=None):
    if user is None:
        return False
    if _is_privileged(user, name):
        return True
    if permissions is None:
        permissions = effective_permissions(user)
    return name in permissions


def has_any_permission(user, names, permissions=None):
    if user is None:
        return False
    if any(_is_privileged(user, name) for name in names):
        return True
    if permissions is None:
        permissions = effective_permissions(user)
    return any(name in permissions for name in names)


def has_all_permissions(user, names, permissions=None):
    if user is None:
        return False
    if permissions is None:
        permissions = effective_permissions(user)
    return all(_is_privileged(user, name) or name in permissions for name in names)


def get_required_permissions(path):
    for page, required in PAGE_PERMISSIONS:
        if path == page:
            return required
    for page, required in PAGE_PERMISSIONS:
        if page != '/' and path.startswith(page):
            return required
    return []


def is_public_path(path):
    return not get_required_permissions(path)


def can_access_feature(user, feature, permissions=None):
    if user is None:
        return False
    rule = ROLE_FEATURES.get(feature)
    if rule is None:
        return False
    if rule == OWNER_ONLY:
        return user.is_owner
    if rule == SUPER_ADMIN_ONLY:
        return user.is_super_admin
    if user.is_owner or user.is_super_admin:
        return True
    if permissions is None:
        permissions = effective_permissions(user)
    return any(name in permissions for name in rule)


def role_features(user):
    """All feature flags for a user, resolving permissions once."""
    permissions = effective_permissions(user) if user else set()
    return {feature: can_access_feature(user, feature, permissions) for feature in ROLE_FEATURES}


def can_delete_animals(user):
    return can_access_feature(user, 'delete_animals')


def can_log_castration(user):
    return can_access_feature(user, 'log_castration')


def can_manage_breeding(user):
    return can_access_feature(user, 'manage_breeding')


def can_view_financials(user):
    return can_access_feature(user, 'view_financials')


def can_manage_users(user):
    return can_access_feature(user, 'manage_users')


def can_view_audit_logs(user):
    return can_access_feature(user, 'view_audit_logs')


def primary_role(user):
    if user is None:
        return None
    if user.is_super_admin:
        return 'super_admin'
    if user.is_owner:
        return 'owner'

    first_role = user.roles.order_by('pk').first()
    if first_role:
        role_name = first_role.name.lower()
        if 'vet' in role_name:
            return 'veterinarian' if has_permission(user, 'edit_health') else 'vet_tech'
        if 'manager' in role_name or 'helper' in role_name:
            if has_any_permission(user, ['create_animals', 'edit_animals']):
                return 'farm_manager'
            return 'field_worker'
        if 'accountant' in role_name:
            return 'accountant'
    return 'field_worker'


def role_homepage(user):
    return ROLE_HOMEPAGES.get(primary_role(user), 'dashboard')
