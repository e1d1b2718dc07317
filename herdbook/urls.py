from django.contrib import admin
from django.urls import path
from livestock import views

urlpatterns = [
    path('admin/', admin.site.urls),
    path('', views.dashboard, name='dashboard'),

    # Demo user selection
    path('choose-user/', views.choose_user, name='choose_user'),
    path('choose-user/switch/', views.switch_user, name='switch_user'),

    # Animals
    path('animals/', views.animal_list, name='animal_list'),
    path('animals/add/', views.add_animal, name='add_animal'),
    path('animals/<int:animal_id>/', views.animal_detail, name='animal_detail'),
    path('animals/<int:animal_id>/edit/', views.edit_animal, name='edit_animal'),
    path('animals/<int:animal_id>/delete/', views.delete_animal, name='delete_animal'),
    path('animals/<int:animal_id>/castrate/', views.castrate_animal, name='castrate_animal'),
    path('animals/<int:animal_id>/pedigree/', views.animal_pedigree, name='animal_pedigree'),
    path('animals/<int:animal_id>/tag-card/', views.animal_tag_card, name='animal_tag_card'),

    # Lineage API
    path('api/animals/<int:animal_id>/pedigree/', views.api_animal_pedigree, name='api_animal_pedigree'),
    path('api/animals/<int:animal_id>/mates/', views.api_optimal_mates, name='api_optimal_mates'),
    path('api/animals/<int:animal_id>/inbreeding-risk/', views.api_inbreeding_risk, name='api_inbreeding_risk'),

    # Breeding
    path('breeding/', views.breeding_dashboard, name='breeding_dashboard'),
    path('breeding/add/', views.add_breeding_record, name='add_breeding_record'),
    path('breeding/analytics/', views.breeding_analytics, name='breeding_analytics'),
    path('breeding/<int:record_id>/birth/', views.record_birth, name='record_birth'),
    path('external-farms/', views.external_farms, name='external_farms'),
    path('external-farms/animals/add/', views.add_external_animal, name='add_external_animal'),
    path('hire-agreements/', views.hire_agreement_list, name='hire_agreement_list'),
    path('hire-agreements/add/', views.add_hire_agreement, name='add_hire_agreement'),
    path('hire-agreements/<int:agreement_id>/payment/', views.record_hire_payment, name='record_hire_payment'),

    # Farms
    path('farms/', views.farm_list, name='farm_list'),
    path('farms/add/', views.add_farm, name='add_farm'),
    path('farms/<int:farm_id>/edit/', views.edit_farm, name='edit_farm'),

    # Operations
    path('activities/', views.activity_list, name='activity_list'),
    path('inventory/', views.inventory_list, name='inventory_list'),
    path('inventory/<int:item_id>/movement/', views.record_inventory_movement, name='record_inventory_movement'),

    # Finance
    path('expenses/', views.expense_list, name='expense_list'),
    path('sales/', views.sales_list, name='sales_list'),
    path('sales/animals/add/', views.add_animal_sale, name='add_animal_sale'),
    path('sales/products/add/', views.add_product_sale, name='add_product_sale'),
    path('tax/rates/', views.tax_rate_list, name='tax_rate_list'),
    path('tax/rates/<int:rate_id>/edit/', views.edit_tax_rate, name='edit_tax_rate'),

    # Team & Access
    path('users/', views.user_list, name='user_list'),
    path('roles/', views.role_list, name='role_list'),
    path('permissions/', views.permission_library, name='permission_library'),
    path('role-templates/', views.role_templates, name='role_templates'),
    path('delegations/', views.delegation_list, name='delegation_list'),
    path('delegations/add/', views.add_delegation, name='add_delegation'),
    path('delegations/<int:delegation_id>/revoke/', views.revoke_delegation, name='revoke_delegation'),
    path('audit-logs/', views.audit_logs, name='audit_logs'),

    # Platform administration (super admin)
    path('platform/', views.admin_overview, name='admin_overview'),
    path('platform/tenants/', views.admin_tenants, name='admin_tenants'),
    path('platform/subscriptions/', views.admin_subscriptions, name='admin_subscriptions'),
    path('platform/subscriptions/<int:subscription_id>/toggle/', views.toggle_subscription, name='toggle_subscription'),

    # CSV Exports
    path('export/animals/', views.export_animals_csv, name='export_animals_csv'),
    path('export/expenses/', views.export_expenses_csv, name='export_expenses_csv'),
    path('export/sales/', views.export_sales_csv, name='export_sales_csv'),
]
