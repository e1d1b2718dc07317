"""Demo dataset: four tenants, their users and roles, and a small cattle herd
with enough recorded parentage to exercise the pedigree pages.

Dates for ongoing work (pregnancies, delegations, subscriptions) are relative
to today so the dashboard always has something to show.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from .models import (Permission, RoleTemplate, SubscriptionPlan, Tenant, TenantSubscription, FarmUser,
    Role, Farm, Delegation, AuditLog, Animal, ExternalFarm, ExternalAnimal, BreedingRecord,
    HireAgreement, Activity, Expense, AnimalSale, ProductSale, InventoryItem, InventoryMovement, TaxRate)

logger = logging.getLogger(__name__)

PERMISSIONS = [
    # name, display name, description, category, action, resource type
    ('view_animals', 'View Animals', 'View list and details of animals', 'animals', 'view_animals', 'animal'),
    ('create_animals', 'Create Animals', 'Add new animals to the system', 'animals', 'create_animals', 'animal'),
    ('edit_animals', 'Edit Animals', 'Modify animal information', 'animals', 'edit_animals', 'animal'),
    ('delete_animals', 'Delete Animals', 'Remove animals from the system', 'animals', 'delete_animals', 'animal'),
    ('edit_health', 'Edit Animal Health', 'Update animal health status', 'animals', 'edit_health', 'animal'),
    ('create_feeding', 'Log Feeding', 'Create feeding activity records', 'activities', 'create_activity', 'activity'),
    ('create_breeding', 'Log Breeding', 'Create breeding activity records', 'activities', 'create_activity', 'activity'),
    ('create_health_check', 'Log Health Check', 'Create health check/vaccination records', 'activities', 'create_activity', 'activity'),
    ('create_general', 'Log General Activity', 'Create general activity records', 'activities', 'create_activity', 'activity'),
    ('edit_activities', 'Edit Activities', 'Modify existing activity records', 'activities', 'edit_activities', 'activity'),
    ('delete_activities', 'Delete Activities', 'Remove activity records', 'activities', 'delete_activities', 'activity'),
    ('view_health_reports', 'View Health Reports', 'Access health-related reports', 'reports', 'view_reports', 'report'),
    ('view_operational_reports', 'View Operational Reports', 'Access operational/activity reports', 'reports', 'view_reports', 'report'),
    ('view_financial_reports', 'View Financial Reports', 'Access financial/invoice reports', 'reports', 'view_reports', 'report'),
    ('manage_users', 'Manage Users', 'Create, edit, and assign users to roles', 'management', 'manage_users', 'user'),
    ('manage_roles', 'Manage Roles', 'Create and customize roles and permissions', 'management', 'manage_roles', 'role'),
    ('manage_subscriptions', 'Manage Subscriptions', 'View and manage subscription plans', 'management', 'manage_subscriptions', 'subscription'),
    ('view_audit_logs', 'View Audit Logs', 'Access audit trail and history', 'management', 'view_audit_logs', 'audit'),
    ('super_admin', 'Super Admin', 'Full system administration access across all tenants', 'management', 'super_admin', 'system'),
]

ROLE_TEMPLATES = [
    ('veterinarian', 'Veterinarian', 'Medical professional with full animal health access', 'medical',
     ['view_animals', 'edit_health', 'create_health_check', 'view_health_reports']),
    ('farm_manager', 'Farm Manager', 'Full operational control of the farm', 'operations',
     ['view_animals', 'create_animals', 'edit_animals', 'create_feeding', 'create_breeding',
      'create_general', 'edit_activities', 'view_operational_reports']),
    ('field_worker', 'Field Worker', 'Daily operational tasks and activity logging', 'operations',
     ['view_animals', 'create_feeding', 'create_general']),
    ('accountant', 'Accountant', 'Financial reporting and sales management', 'financial',
     ['view_animals', 'view_financial_reports', 'manage_subscriptions']),
]

HELPER_PERMISSIONS = ['view_animals', 'create_animals', 'edit_animals', 'create_feeding', 'create_breeding',
                      'create_general', 'edit_activities', 'view_operational_reports', 'view_financial_reports']

DEMO_MODELS = [AuditLog, Delegation, InventoryMovement, InventoryItem, ProductSale, AnimalSale, Expense,
               Activity, BreedingRecord, HireAgreement, Animal, ExternalAnimal, ExternalFarm, TaxRate,
               Farm, TenantSubscription, FarmUser, Role, Tenant, SubscriptionPlan, RoleTemplate, Permission]


def flush_demo_data():
    for model in DEMO_MODELS:
        model.objects.all().delete()


@transaction.atomic
def load_demo_data():
    """Create the demo dataset and return the number of rows per model."""
    today = date.today()
    now = timezone.now()

    permissions = {}
    for name, display_name, description, category, action, resource_type in PERMISSIONS:
        permissions[name] = Permission.objects.create(
            name=name, display_name=display_name, description=description,
            category=category, action=action, resource_type=resource_type,
        )

    templates = {}
    for name, display_name, description, category, names in ROLE_TEMPLATES:
        template = RoleTemplate.objects.create(name=name, display_name=display_name,
                                               description=description, category=category)
        template.permissions.set([permissions[n] for n in names])
        templates[name] = template

    # --- TENANTS & PLANS ---
    basic = SubscriptionPlan.objects.create(name='Basic', price=Decimal('50000'), max_users=5, max_farms=2,
                                            max_animals=100, features=['Basic Reports', 'Email Support'])
    professional = SubscriptionPlan.objects.create(name='Professional', price=Decimal('150000'), max_users=20,
                                                   max_farms=10, max_animals=1000,
                                                   features=['Advanced Reports', 'Priority Support', 'API Access'])
    enterprise = SubscriptionPlan.objects.create(name='Enterprise', price=Decimal('500000'), max_users=-1,
                                                 max_farms=-1, max_animals=-1,
                                                 features=['All Features', '24/7 Support', 'Custom Integrations', 'Dedicated Manager'])

    abc = Tenant.objects.create(organization_name='ABC Livestock Co.', plan=basic)
    green_valley = Tenant.objects.create(organization_name='Green Valley Farms', plan=professional)
    mountain_view = Tenant.objects.create(organization_name='Mountain View Ranch', plan=basic)
    sunset = Tenant.objects.create(organization_name='Sunset Dairy Farm', plan=enterprise)

    year_end = today + timedelta(days=180)
    TenantSubscription.objects.create(tenant=abc, plan=basic, start_date=today - timedelta(days=185), end_date=year_end)
    TenantSubscription.objects.create(tenant=green_valley, plan=professional, start_date=today - timedelta(days=170), end_date=year_end)
    TenantSubscription.objects.create(tenant=mountain_view, plan=basic, status='suspended', start_date=today - timedelta(days=165),
                                      end_date=year_end, auto_renew=False, payment_status='overdue')
    TenantSubscription.objects.create(tenant=sunset, plan=enterprise, start_date=today - timedelta(days=150),
                                      end_date=today + timedelta(days=215))

    # --- USERS & ROLES ---
    vet_role = Role.objects.create(tenant=abc, template=templates['veterinarian'], name='Veterinarian',
                                   description='Medical professional role')
    vet_role.permissions.set(templates['veterinarian'].permissions.all())
    helper_role = Role.objects.create(tenant=abc, name='Helper',
                                      description='Farm data manager - handles all farm records except veterinary data')
    helper_role.permissions.set([permissions[n] for n in HELPER_PERMISSIONS])
    admin_role = Role.objects.create(name='Super Admin', description='Full system administration access across all tenants')
    admin_role.permissions.set(permissions.values())

    owner = FarmUser.objects.create(email='owner@demo.com', first_name='John', last_name='Doe', tenant=abc)
    vet = FarmUser.objects.create(email='vet@demo.com', first_name='Dr. Sarah', last_name='Smith', tenant=abc)
    worker = FarmUser.objects.create(email='worker@demo.com', first_name='Mike', last_name='Johnson', tenant=abc)
    FarmUser.objects.create(email='superadmin@demo.com', first_name='Admin', last_name='System',
                            is_super_admin=True).roles.add(admin_role)
    vet.roles.add(vet_role)
    worker.roles.add(helper_role)
    abc.owner = owner
    abc.save()

    for tenant, email, first_name, last_name in [
        (green_valley, 'owner@greenvalley.com', 'Grace', 'Namuli'),
        (mountain_view, 'owner@mountainview.com', 'Robert', 'Okello'),
        (sunset, 'owner@sunsetdairy.com', 'Esther', 'Achieng'),
    ]:
        tenant.owner = FarmUser.objects.create(email=email, first_name=first_name, last_name=last_name, tenant=tenant)
        tenant.save()

    main_farm = Farm.objects.create(tenant=abc, farm_name='Main Farm', location='Kampala', district='Kampala', farm_type='dairy')
    north = Farm.objects.create(tenant=abc, farm_name='North Branch', location='Wakiso', district='Wakiso', farm_type='poultry')
    dairy_unit = Farm.objects.create(tenant=green_valley, farm_name='Dairy Unit', location='Mukono', district='Mukono', farm_type='dairy')

    delegation = Delegation.objects.create(
        tenant=abc, delegator=owner, delegate=vet, delegation_type='permission',
        start_date=now - timedelta(days=2), end_date=now + timedelta(days=5),
        description='Delegating health editing while traveling',
    )
    delegation.delegated_permissions.add(permissions['edit_health'])

    # --- EXTERNAL FARMS ---
    abc_cattle = ExternalFarm.objects.create(
        tenant=abc, farm_name='ABC Cattle Farm', owner_name='John Mukasa', contact_person='John Mukasa',
        phone='+256 700 123 456', email='john@abcfarm.com', location='Mukono', district='Mukono',
        farm_type='cattle', specialties=['cattle_breeding'],
    )
    goats_farm = ExternalFarm.objects.create(
        tenant=abc, farm_name='Green Valley Goats', owner_name='Sarah Nakato', contact_person='Sarah Nakato',
        phone='+256 700 234 567', location='Wakiso', district='Wakiso', farm_type='goat', specialties=['goat_breeding'],
    )
    sunrise = ExternalFarm.objects.create(
        tenant=abc, farm_name='Sunrise Dairy Farm', owner_name='Peter Mukasa', contact_person='Peter Mukasa',
        phone='+256700123456', email='peter@sunrisedairy.com', location='Mbarara', district='Mbarara',
        farm_type='dairy', specialties=['cattle_breeding', 'dairy_production'],
    )
    bull_123 = ExternalAnimal.objects.create(
        external_farm=abc_cattle, tag_number='Bull-123', animal_type='cattle', breed='Holstein', gender='male',
        age_years=5, weight_kg=Decimal('650'), health_certificate_available=True,
        health_certificate_expiry=today + timedelta(days=120),
    )
    buck_456 = ExternalAnimal.objects.create(
        external_farm=goats_farm, tag_number='Buck-456', animal_type='goat', breed='Boer', gender='male',
        age_years=3, weight_kg=Decimal('85'),
    )
    ext_bull = ExternalAnimal.objects.create(
        external_farm=sunrise, tag_number='EXT-BULL-001', animal_type='cattle', breed='Friesian', gender='male',
        age_years=4, weight_kg=Decimal('700'), health_certificate_available=True,
        health_certificate_expiry=today + timedelta(days=60),
    )

    # --- HERD ---
    def animal(tag, animal_type, breed, gender, birth_date, farm=main_farm, **extra):
        return Animal.objects.create(tenant=abc, farm=farm, tag_number=tag, animal_type=animal_type, breed=breed,
                                     gender=gender, birth_date=birth_date, **extra)

    cow_1 = animal('COW-001', 'cattle', 'Holstein', 'female', date(2020, 3, 15), breeding_value=78,
                   traits=[{'trait_name': 'High milk yield'}, {'trait_name': 'Docile temperament'}])
    cow_2 = animal('COW-002', 'cattle', 'Jersey', 'female', date(2019, 5, 20), breeding_value=70,
                   traits=[{'trait_name': 'High butterfat'}])
    animal('CHK-001', 'chicken', 'Rhode Island Red', 'female', date(2023, 8, 10), farm=north)
    bull_1 = animal('BULL-001', 'cattle', 'Holstein', 'male', date(2018, 9, 1), breeding_value=88, parentage_verified=True,
                    traits=[{'trait_name': 'High milk yield'}, {'trait_name': 'Strong frame'}])
    cow_3 = animal('COW-003', 'cattle', 'Holstein', 'female', date(2022, 1, 10), mother=cow_1, father=bull_1,
                   breeding_value=82, parentage_verified=True, traits=[{'trait_name': 'High milk yield'}])
    bull_2 = animal('BULL-002', 'cattle', 'Holstein x Jersey', 'male', date(2021, 11, 2), mother=cow_2, father=bull_1,
                    breeding_value=65)
    cow_4 = animal('COW-004', 'cattle', 'Holstein x Jersey', 'female', date(2024, 2, 14), mother=cow_3, father=bull_2)
    steer = animal('STR-001', 'cattle', 'Ankole', 'male', date(2023, 4, 3), is_castrated=True,
                   castration_date=date(2023, 10, 1), castration_method='banding')
    animal('BULL-003', 'cattle', 'Friesian', 'male', date(2022, 6, 20), external_father=ext_bull,
           breeding_value=74)
    animal('GOAT-001', 'goat', 'Boer', 'female', date(2023, 3, 5), external_father=buck_456)

    hire_in = HireAgreement.objects.create(
        tenant=abc, farm=main_farm, agreement_type='hire_in', external_farm=abc_cattle, external_animal=bull_123,
        start_date=today - timedelta(days=270), end_date=today - timedelta(days=240), hire_fee=Decimal('200000'),
        payment_schedule='monthly', payment_status='paid', paid_amount=Decimal('200000'),
        payment_date=today - timedelta(days=268), payment_method='mobile_money', payment_reference='MM-2024-0117',
        terms='Bull hire for breeding purposes, 1 month rental', created_by=owner,
    )
    HireAgreement.objects.create(
        tenant=abc, farm=main_farm, agreement_type='hire_out', external_farm=goats_farm, animal=cow_1,
        start_date=today - timedelta(days=30), end_date=today + timedelta(days=1), hire_fee=Decimal('150000'),
        payment_schedule='monthly', terms='Cow hire to Valley Breeding Center', created_by=owner,
    )

    # --- BREEDING ---
    def breeding(dam, breeding_date, **extra):
        return BreedingRecord.objects.create(tenant=abc, farm=dam.farm, animal=dam, breeding_date=breeding_date,
                                             recorded_by=owner, **extra)

    record = breeding(cow_1, date(2021, 4, 2), sire=bull_1, conception_date=date(2021, 4, 5),
                      actual_birth_date=date(2022, 1, 10), birth_outcome='successful', offspring_count=1,
                      pregnancy_status='completed', notes='First breeding attempt with premium genetics')
    record.offspring.add(cow_3)
    record = breeding(cow_2, date(2021, 1, 20), sire=bull_1, breeding_method='natural', conception_date=date(2021, 1, 27),
                      actual_birth_date=date(2021, 11, 2), birth_outcome='successful', offspring_count=1,
                      pregnancy_status='completed', notes='Healthy calf delivered')
    record.offspring.add(bull_2)
    record = breeding(cow_3, date(2023, 5, 1), sire=bull_2, conception_date=date(2023, 5, 8),
                      actual_birth_date=date(2024, 2, 14), birth_outcome='successful', offspring_count=1,
                      pregnancy_status='completed')
    record.offspring.add(cow_4)
    breeding(cow_2, today - timedelta(days=300), sire_source='external', external_sire=ext_bull,
             breeding_method='artificial_insemination', conception_date=today - timedelta(days=293),
             actual_birth_date=today - timedelta(days=15), birth_outcome='complications', offspring_count=1,
             complications='Difficult delivery, required veterinary assistance', pregnancy_status='completed',
             notes='External breeding with complications during birth')
    breeding(cow_1, today - timedelta(days=268), sire_source='external', external_sire=bull_123,
             hire_agreement=hire_in, breeding_method='natural', conception_date=today - timedelta(days=266),
             pregnancy_status='confirmed', notes='Bred with external bull from ABC Cattle Farm')
    breeding(cow_3, today - timedelta(days=40), sire=bull_1, breeding_method='artificial_insemination')

    # --- ACTIVITIES, EXPENSES & SALES ---
    Activity.objects.create(tenant=abc, farm=main_farm, activity_type='feeding', animal=cow_1,
                            description='Morning feeding - 5kg hay', activity_date=today - timedelta(days=1),
                            performed_by=worker, cost=Decimal('5000'))
    Activity.objects.create(tenant=abc, farm=main_farm, activity_type='health_check', animal=cow_1,
                            description='Routine health check - all normal', activity_date=today - timedelta(days=2),
                            performed_by=vet)
    Activity.objects.create(tenant=abc, farm=main_farm, activity_type='castration', animal=steer,
                            description='Banding at six months', activity_date=date(2023, 10, 1), performed_by=vet,
                            metadata={'method': 'banding', 'label_before': 'Bull', 'label_after': 'Steer'})

    Expense.objects.create(tenant=abc, farm=main_farm, expense_type='feed', description='Animal feed purchase',
                           amount=Decimal('150000'), expense_date=today - timedelta(days=12), vendor='Feed Suppliers Ltd',
                           payment_method='bank_transfer', created_by=owner)
    Expense.objects.create(tenant=abc, farm=main_farm, expense_type='medicine', description='Vaccination supplies',
                           amount=Decimal('75000'), expense_date=today - timedelta(days=9), vendor='Vet Supplies Co',
                           payment_method='cash', created_by=owner)

    sold = animal('COW-005', 'cattle', 'Ankole', 'female', date(2019, 2, 2), status='sold')
    AnimalSale.objects.create(tenant=abc, farm=main_farm, animal=sold, sale_date=today - timedelta(days=20),
                              customer_name='Local Market', sale_price=Decimal('500000'),
                              payment_method='bank_transfer', payment_status='paid', created_by=owner)
    ProductSale.objects.create(tenant=abc, farm=main_farm, product_type='milk', animal=cow_1, quantity=Decimal('50'),
                               unit='liters', unit_price=Decimal('2000'), sale_date=today - timedelta(days=5),
                               customer_name='Dairy Co-op', payment_method='cash', payment_status='paid', created_by=owner)
    ProductSale.objects.create(tenant=abc, farm=north, product_type='eggs', quantity=Decimal('120'), unit='pieces',
                               unit_price=Decimal('500'), sale_date=today - timedelta(days=4),
                               customer_name='Local Store', payment_method='cash', created_by=owner)

    TaxRate.objects.create(tax_name='Value Added Tax (VAT)', tax_code='VAT-UG-18', tax_type='vat',
                           rate_percentage=Decimal('18.00'), effective_from=date(2024, 1, 1), is_system_default=True,
                           description='Uganda standard VAT rate (18%)')
    TaxRate.objects.create(tenant=abc, tax_name='VAT - Custom Rate', tax_code='VAT-TENANT-1-18', tax_type='vat',
                           rate_percentage=Decimal('18.00'), effective_from=date(2024, 1, 1),
                           description='Tenant-specific VAT rate')

    # --- INVENTORY ---
    pellets = InventoryItem.objects.create(
        tenant=abc, farm=main_farm, item_name='Cattle Feed Pellets', item_code='FEED-CF-001', category='feed',
        unit='kg', current_stock=Decimal('0'), reorder_point=Decimal('200'), reorder_quantity=Decimal('500'),
        unit_cost=Decimal('1200'), supplier='AgriFeed Supplies', location='Warehouse A - Feed Storage',
    )
    InventoryItem.objects.create(
        tenant=abc, farm=main_farm, item_name='Hay Bales', item_code='FEED-HB-001', category='feed', unit='bales',
        current_stock=Decimal('120'), reorder_point=Decimal('50'), reorder_quantity=Decimal('100'),
        unit_cost=Decimal('15000'), supplier='Green Pastures Farm', location='Warehouse B - Hay Storage',
    )
    InventoryItem.objects.create(
        tenant=abc, farm=north, item_name='Chicken Feed', item_code='FEED-CH-001', category='feed', unit='kg',
        current_stock=Decimal('85'), reorder_point=Decimal('100'), reorder_quantity=Decimal('200'),
        unit_cost=Decimal('1500'), supplier='Poultry Feed Co.', status='low_stock',
    )
    InventoryItem.objects.create(
        tenant=abc, farm=main_farm, item_name='Antibiotic Injection', item_code='MED-AB-001', category='medication',
        unit='vials', current_stock=Decimal('24'), reorder_point=Decimal('10'), unit_cost=Decimal('8500'),
        expiry_date=today + timedelta(days=200), batch_number='AB-2291',
    )
    InventoryMovement.objects.create(item=pellets, movement_type='in', quantity=Decimal('500'), unit_cost=Decimal('1200'),
                                     reason='purchase', reference_number='INV-2024-001', notes='Monthly feed purchase',
                                     created_by=owner).apply()
    InventoryMovement.objects.create(item=pellets, movement_type='out', quantity=Decimal('50'), reason='usage',
                                     notes='Daily feeding', created_by=vet).apply()

    AuditLog.objects.create(user=owner, tenant=abc, farm=main_farm, action='create_animal', entity_type='animal',
                            entity_id=cow_1.pk, details={'animal_name': 'Bella', 'animal_type': 'cattle'},
                            logged_at=now - timedelta(days=6))
    AuditLog.objects.create(user=vet, tenant=abc, farm=main_farm, action='edit_health', entity_type='animal',
                            entity_id=cow_1.pk, details={'health_status': 'healthy'}, delegation=delegation,
                            logged_at=now - timedelta(days=1))

    counts = {model.__name__: model.objects.count() for model in DEMO_MODELS}
    logger.info("Demo data loaded: %s animals across %s tenants", counts['Animal'], counts['Tenant'])
    return counts
