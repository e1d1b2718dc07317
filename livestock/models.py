from django.db import models, transaction
from django.utils import timezone
from datetime import date, timedelta
from decimal import Decimal

PAYMENT_METHODS = [
    ('cash', 'Cash'),
    ('bank_transfer', 'Bank Transfer'),
    ('check', 'Check'),
    ('mobile_money', 'Mobile Money'),
]

PAYMENT_STATUSES = [('pending', 'Pending'), ('partial', 'Partial'), ('paid', 'Paid')]

# Days from conception (or breeding) to expected birth
GESTATION_DAYS = {
    'cattle': 280,
    'goat': 150,
    'sheep': 147,
    'pig': 114,
}
DEFAULT_GESTATION_DAYS = 280


# --- ACCESS CONTROL ---
class Permission(models.Model):
    CATEGORIES = [
        ('animals', 'Animals'),
        ('activities', 'Activities'),
        ('reports', 'Reports'),
        ('management', 'Management'),
    ]

    name = models.CharField(max_length=50, unique=True)
    display_name = models.CharField(max_length=100)
    description = models.CharField(max_length=255, blank=True)
    category = models.CharField(max_length=20, choices=CATEGORIES)
    action = models.CharField(max_length=50)
    resource_type = models.CharField(max_length=50)
    system_defined = models.BooleanField(default=True)

    class Meta:
        ordering = ['category', 'name']

    def __str__(self):
        return self.display_name


class RoleTemplate(models.Model):
    name = models.CharField(max_length=50, unique=True)
    display_name = models.CharField(max_length=100)
    description = models.CharField(max_length=255, blank=True)
    category = models.CharField(max_length=50, blank=True)
    icon = models.CharField(max_length=10, blank=True)
    permissions = models.ManyToManyField(Permission, blank=True, related_name='role_templates')

    def __str__(self):
        return self.display_name


# --- TENANTS & SUBSCRIPTIONS ---
class SubscriptionPlan(models.Model):
    name = models.CharField(max_length=50)
    price = models.DecimalField(max_digits=12, decimal_places=2, help_text="Monthly price")
    max_users = models.IntegerField(default=5, help_text="-1 for unlimited")
    max_farms = models.IntegerField(default=2, help_text="-1 for unlimited")
    max_animals = models.IntegerField(default=100, help_text="-1 for unlimited")
    features = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=20, default='active')

    def __str__(self):
        return self.name

    @staticmethod
    def allows(limit, count):
        return limit < 0 or count < limit

    def limit_display(self, value):
        return 'Unlimited' if value < 0 else str(value)


class Tenant(models.Model):
    organization_name = models.CharField(max_length=200)
    owner = models.ForeignKey('FarmUser', null=True, blank=True, on_delete=models.SET_NULL, related_name='owned_tenants')
    plan = models.ForeignKey(SubscriptionPlan, null=True, blank=True, on_delete=models.SET_NULL, related_name='tenants')
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return self.organization_name


class TenantSubscription(models.Model):
    STATUS_CHOICES = [('active', 'Active'), ('suspended', 'Suspended'), ('cancelled', 'Cancelled')]
    PAYMENT_STATUS_CHOICES = [('current', 'Current'), ('overdue', 'Overdue')]

    tenant = models.OneToOneField(Tenant, on_delete=models.CASCADE, related_name='subscription')
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name='subscriptions')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    start_date = models.DateField(default=date.today)
    end_date = models.DateField()
    auto_renew = models.BooleanField(default=True)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='current')

    def __str__(self):
        return f"{self.tenant} - {self.plan} ({self.status})"

    @property
    def days_remaining(self):
        return max((self.end_date - date.today()).days, 0)

    @property
    def is_active(self):
        return self.status == 'active'


class FarmUser(models.Model):
    ACCOUNT_STATUSES = [
        ('active', 'Active'),
        ('pending_invitation', 'Pending Invitation'),
        ('suspended', 'Suspended'),
    ]

    email = models.EmailField(unique=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    phone = models.CharField(max_length=30, blank=True)
    account_status = models.CharField(max_length=20, choices=ACCOUNT_STATUSES, default='active')
    is_super_admin = models.BooleanField(default=False)
    tenant = models.ForeignKey(Tenant, null=True, blank=True, on_delete=models.SET_NULL, related_name='users', help_text="Leave blank for system-wide accounts")
    roles = models.ManyToManyField('Role', blank=True, related_name='users')

    class Meta:
        ordering = ['first_name', 'last_name']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def is_owner(self):
        return self.tenant_id is not None and self.tenant.owner_id == self.pk


class Role(models.Model):
    tenant = models.ForeignKey(Tenant, null=True, blank=True, on_delete=models.CASCADE, related_name='roles', help_text="Leave blank for system roles")
    template = models.ForeignKey(RoleTemplate, null=True, blank=True, on_delete=models.SET_NULL, related_name='roles')
    name = models.CharField(max_length=100)
    description = models.CharField(max_length=255, blank=True)
    permissions = models.ManyToManyField(Permission, blank=True, related_name='roles')
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return self.name


class Farm(models.Model):
    STATUS_CHOICES = [('active', 'Active'), ('inactive', 'Inactive'), ('archived', 'Archived')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='farms')
    farm_name = models.CharField(max_length=200)
    location = models.CharField(max_length=200, blank=True)
    district = models.CharField(max_length=100, blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    farm_type = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')

    def __str__(self):
        return self.farm_name


class Delegation(models.Model):
    TYPE_CHOICES = [
        ('permission', 'Specific Permissions'),
        ('role', 'Role'),
        ('full_access', 'Full Access'),
    ]
    STATUS_CHOICES = [('active', 'Active'), ('revoked', 'Revoked'), ('expired', 'Expired')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='delegations')
    delegator = models.ForeignKey(FarmUser, on_delete=models.CASCADE, related_name='delegations_given')
    delegate = models.ForeignKey(FarmUser, on_delete=models.CASCADE, related_name='delegations_received')
    delegation_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='permission')
    start_date = models.DateTimeField(default=timezone.now)
    end_date = models.DateTimeField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    description = models.CharField(max_length=255, blank=True)
    delegated_role = models.ForeignKey(Role, null=True, blank=True, on_delete=models.SET_NULL, related_name='delegations')
    delegated_permissions = models.ManyToManyField(Permission, blank=True, related_name='delegations')
    created_at = models.DateTimeField(default=timezone.now)
    revoked_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-start_date']

    def __str__(self):
        return f"{self.delegator} -> {self.delegate} ({self.get_delegation_type_display()})"

    def is_effective(self, at=None):
        at = at or timezone.now()
        return self.status == 'active' and self.start_date <= at <= self.end_date

    @property
    def display_status(self):
        """Stored status, reported as expired once the end date has passed."""
        if self.status == 'active' and self.end_date < timezone.now():
            return 'expired'
        return self.status

    def revoke(self):
        self.status = 'revoked'
        self.revoked_at = timezone.now()
        self.save(update_fields=['status', 'revoked_at'])


class AuditLog(models.Model):
    user = models.ForeignKey(FarmUser, null=True, on_delete=models.SET_NULL, related_name='audit_logs')
    tenant = models.ForeignKey(Tenant, null=True, blank=True, on_delete=models.CASCADE, related_name='audit_logs')
    farm = models.ForeignKey(Farm, null=True, blank=True, on_delete=models.SET_NULL, related_name='audit_logs')
    action = models.CharField(max_length=100)
    entity_type = models.CharField(max_length=50)
    entity_id = models.IntegerField(null=True, blank=True)
    details = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    delegation = models.ForeignKey(Delegation, null=True, blank=True, on_delete=models.SET_NULL, related_name='audit_logs')
    logged_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-logged_at']

    def __str__(self):
        return f"{self.logged_at:%Y-%m-%d %H:%M} {self.action} {self.entity_type}#{self.entity_id}"


# --- EXTERNAL FARMS ---
class ExternalFarm(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='external_farms')
    farm_name = models.CharField(max_length=200)
    owner_name = models.CharField(max_length=200, blank=True)
    contact_person = models.CharField(max_length=200, blank=True)
    phone = models.CharField(max_length=30)
    email = models.EmailField(blank=True)
    location = models.CharField(max_length=200, blank=True)
    district = models.CharField(max_length=100, blank=True)
    farm_type = models.CharField(max_length=50, blank=True)
    specialties = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.farm_name


class ExternalAnimal(models.Model):
    ANIMAL_TYPES = [('cattle', 'Cattle'), ('goat', 'Goat'), ('sheep', 'Sheep'), ('pig', 'Pig'), ('other', 'Other')]
    GENDER_CHOICES = [('male', 'Male'), ('female', 'Female')]
    HEALTH_CHOICES = [('healthy', 'Healthy'), ('sick', 'Sick'), ('recovering', 'Recovering')]

    external_farm = models.ForeignKey(ExternalFarm, on_delete=models.CASCADE, related_name='animals')
    tag_number = models.CharField(max_length=50, blank=True)
    animal_type = models.CharField(max_length=10, choices=ANIMAL_TYPES)
    breed = models.CharField(max_length=100, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    age_years = models.PositiveIntegerField(null=True, blank=True)
    weight_kg = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)
    health_status = models.CharField(max_length=20, choices=HEALTH_CHOICES, default='healthy')
    health_certificate_available = models.BooleanField(default=False)
    health_certificate_expiry = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    def __str__(self):
        return f"{self.tag_number or 'Unknown'} ({self.external_farm.farm_name})"

    @property
    def certificate_valid(self):
        return bool(self.health_certificate_available and self.health_certificate_expiry
                    and self.health_certificate_expiry >= date.today())


# --- ANIMALS ---
class Animal(models.Model):
    ANIMAL_TYPES = [
        ('cattle', 'Cattle'), ('goat', 'Goat'), ('sheep', 'Sheep'), ('pig', 'Pig'),
        ('chicken', 'Chicken'), ('duck', 'Duck'), ('other', 'Other'),
    ]
    GENDER_CHOICES = [('male', 'Male'), ('female', 'Female')]
    STATUS_CHOICES = [('active', 'Active'), ('sold', 'Sold'), ('deceased', 'Deceased'), ('disposed', 'Disposed')]
    HEALTH_CHOICES = [
        ('healthy', 'Healthy'), ('sick', 'Sick'),
        ('recovering', 'Recovering'), ('quarantine', 'Quarantine'),
    ]
    CASTRATION_METHODS = [
        ('surgical', 'Surgical'), ('banding', 'Banding'),
        ('chemical', 'Chemical'), ('other', 'Other'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='animals')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='animals')
    tag_number = models.CharField(max_length=50)
    animal_type = models.CharField(max_length=10, choices=ANIMAL_TYPES)
    breed = models.CharField(max_length=100, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES)
    birth_date = models.DateField(null=True, blank=True)
    purchase_date = models.DateField(null=True, blank=True)
    purchase_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active')
    health_status = models.CharField(max_length=20, choices=HEALTH_CHOICES, default='healthy')

    # Pedigree Fields
    mother = models.ForeignKey('self', null=True, blank=True, on_delete=models.SET_NULL, related_name='offspring_as_mother', verbose_name="Dam (Mother)")
    father = models.ForeignKey('self', null=True, blank=True, on_delete=models.SET_NULL, related_name='offspring_as_father', verbose_name="Sire (Father)")
    external_mother = models.ForeignKey(ExternalAnimal, null=True, blank=True, on_delete=models.SET_NULL, related_name='offspring_as_mother', help_text="Only used when the dam is not in your herd")
    external_father = models.ForeignKey(ExternalAnimal, null=True, blank=True, on_delete=models.SET_NULL, related_name='offspring_as_father', help_text="Only used when the sire is not in your herd")

    # Castration
    is_castrated = models.BooleanField(default=False)
    castration_date = models.DateField(null=True, blank=True)
    castration_method = models.CharField(max_length=10, choices=CASTRATION_METHODS, blank=True)
    castration_notes = models.TextField(blank=True)

    # Genetics
    breeding_value = models.FloatField(null=True, blank=True, help_text="0-100 estimated breeding value")
    inbreeding_coefficient = models.FloatField(null=True, blank=True)
    generation_number = models.PositiveIntegerField(null=True, blank=True, help_text="Leave blank to derive from parents")
    parentage_verified = models.BooleanField(default=False)
    traits = models.JSONField(default=list, blank=True, help_text='List of {"trait_name": ...} entries')

    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['tag_number']

    def __str__(self):
        return f"{self.tag_number} ({self.get_animal_type_display()})"

    @property
    def gender_label(self):
        from .pedigree import gender_label
        return gender_label(self)

    @property
    def can_breed(self):
        from .pedigree import can_breed
        return can_breed(self)

    @property
    def display_age(self):
        if not self.birth_date:
            return "Unknown"
        today = date.today()
        total_days = (today - self.birth_date).days
        if total_days < 7:
            return f"{total_days} Days"
        elif total_days < 30:
            weeks = total_days // 7
            return f"{weeks} Week{'s' if weeks != 1 else ''}"
        elif total_days < 365:
            months = total_days // 30
            return f"{months} Month{'s' if months != 1 else ''}"
        years = today.year - self.birth_date.year - ((today.month, today.day) < (self.birth_date.month, self.birth_date.day))
        return f"{years} Year{'s' if years != 1 else ''}"


class BreedingRecord(models.Model):
    SIRE_SOURCES = [('internal', 'Internal'), ('external', 'External')]
    METHODS = [
        ('natural', 'Natural'),
        ('artificial_insemination', 'Artificial Insemination'),
        ('embryo_transfer', 'Embryo Transfer'),
    ]
    OUTCOMES = [
        ('successful', 'Successful'), ('stillborn', 'Stillborn'),
        ('aborted', 'Aborted'), ('complications', 'Complications'),
    ]
    PREGNANCY_STATUSES = [
        ('suspected', 'Suspected'), ('confirmed', 'Confirmed'),
        ('completed', 'Completed'), ('failed', 'Failed'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='breeding_records')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='breeding_records')
    animal = models.ForeignKey(Animal, on_delete=models.CASCADE, related_name='breeding_records', verbose_name="Dam")
    sire = models.ForeignKey(Animal, null=True, blank=True, on_delete=models.SET_NULL, related_name='sired_records')
    external_sire = models.ForeignKey(ExternalAnimal, null=True, blank=True, on_delete=models.SET_NULL, related_name='breeding_records')
    sire_source = models.CharField(max_length=10, choices=SIRE_SOURCES, default='internal')
    breeding_date = models.DateField()
    breeding_method = models.CharField(max_length=30, choices=METHODS, default='natural')
    conception_date = models.DateField(null=True, blank=True)
    expected_due_date = models.DateField(null=True, blank=True, help_text="Auto-calculated from the gestation length if left blank")
    actual_birth_date = models.DateField(null=True, blank=True)
    birth_outcome = models.CharField(max_length=20, choices=OUTCOMES, blank=True)
    offspring_count = models.PositiveIntegerField(null=True, blank=True)
    offspring = models.ManyToManyField(Animal, blank=True, related_name='birth_records')
    complications = models.TextField(blank=True)
    pregnancy_status = models.CharField(max_length=20, choices=PREGNANCY_STATUSES, default='suspected')
    hire_agreement = models.ForeignKey('HireAgreement', null=True, blank=True, on_delete=models.SET_NULL, related_name='breeding_records')
    notes = models.TextField(blank=True)
    recorded_by = models.ForeignKey(FarmUser, null=True, blank=True, on_delete=models.SET_NULL, related_name='breeding_records')
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-breeding_date']

    def __str__(self):
        return f"{self.animal.tag_number} x {self.sire_display} on {self.breeding_date}"

    def save(self, *args, **kwargs):
        start = self.conception_date or self.breeding_date
        if not self.expected_due_date and start:
            days = GESTATION_DAYS.get(self.animal.animal_type, DEFAULT_GESTATION_DAYS)
            self.expected_due_date = start + timedelta(days=days)
        super().save(*args, **kwargs)

    @property
    def sire_display(self):
        if self.sire_source == 'external' and self.external_sire:
            return f"{self.external_sire.tag_number or 'Unknown'} ({self.external_sire.external_farm.farm_name})"
        if self.sire:
            return self.sire.tag_number
        return "Unknown"

    @property
    def offspring_ids(self):
        if self.pk is None:
            return []
        return [a.pk for a in self.offspring.all()]

    @property
    def is_active_pregnancy(self):
        return self.pregnancy_status in ('suspected', 'confirmed')

    @property
    def is_due_soon(self):
        if not self.is_active_pregnancy or not self.expected_due_date:
            return False
        today = date.today()
        return today <= self.expected_due_date <= today + timedelta(days=21)


class HireAgreement(models.Model):
    TYPES = [('hire_in', 'Hire In'), ('hire_out', 'Hire Out')]
    SCHEDULES = [('daily', 'Daily'), ('weekly', 'Weekly'), ('monthly', 'Monthly'), ('one_time', 'One Time')]
    STATUS_CHOICES = [('active', 'Active'), ('completed', 'Completed'), ('cancelled', 'Cancelled')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='hire_agreements')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='hire_agreements')
    agreement_type = models.CharField(max_length=10, choices=TYPES)
    external_farm = models.ForeignKey(ExternalFarm, on_delete=models.CASCADE, related_name='hire_agreements')
    animal = models.ForeignKey(Animal, null=True, blank=True, on_delete=models.SET_NULL, related_name='hire_agreements')
    external_animal = models.ForeignKey(ExternalAnimal, null=True, blank=True, on_delete=models.SET_NULL, related_name='hire_agreements')
    start_date = models.DateField()
    end_date = models.DateField()
    hire_fee = models.DecimalField(max_digits=12, decimal_places=2)
    payment_schedule = models.CharField(max_length=10, choices=SCHEDULES, default='one_time')
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUSES, default='pending')
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    payment_date = models.DateField(null=True, blank=True)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHODS, blank=True)
    payment_reference = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active')
    terms = models.TextField(blank=True)
    created_by = models.ForeignKey(FarmUser, null=True, blank=True, on_delete=models.SET_NULL, related_name='hire_agreements')
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-start_date']

    def __str__(self):
        return f"Hire Agreement #{self.pk} ({self.get_agreement_type_display()})"

    @property
    def external_animal_tag(self):
        return self.external_animal.tag_number if self.external_animal else ''

    @property
    def outstanding_amount(self):
        return max(self.hire_fee - self.paid_amount, Decimal('0.00'))

    @property
    def days_remaining(self):
        return (self.end_date - date.today()).days

    @property
    def timeline_status(self):
        """completed, overdue, expiring_soon (7 days or less) or normal."""
        if self.status in ('completed', 'cancelled'):
            return 'completed'
        days = self.days_remaining
        if days < 0:
            return 'overdue'
        if days <= 7:
            return 'expiring_soon'
        return 'normal'

    def record_payment(self, amount, payment_date, payment_method='', payment_reference=''):
        self.paid_amount += amount
        self.payment_status = 'paid' if self.paid_amount >= self.hire_fee else 'partial'
        self.payment_date = payment_date
        if payment_method:
            self.payment_method = payment_method
        if payment_reference:
            self.payment_reference = payment_reference
        self.save(update_fields=['paid_amount', 'payment_status', 'payment_date',
                                 'payment_method', 'payment_reference'])


# --- ACTIVITIES ---
class Activity(models.Model):
    TYPES = [
        ('feeding', 'Feeding'), ('breeding', 'Breeding'), ('health_check', 'Health Check'),
        ('vaccination', 'Vaccination'), ('castration', 'Castration'),
        ('general', 'General'), ('other', 'Other'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='activities')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='activities')
    activity_type = models.CharField(max_length=20, choices=TYPES)
    animal = models.ForeignKey(Animal, null=True, blank=True, on_delete=models.SET_NULL, related_name='activities')
    description = models.CharField(max_length=255)
    activity_date = models.DateField(default=date.today)
    performed_by = models.ForeignKey(FarmUser, null=True, blank=True, on_delete=models.SET_NULL, related_name='activities')
    cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-activity_date', '-created_at']
        verbose_name_plural = "Activities"

    def __str__(self):
        return f"{self.activity_date} - {self.get_activity_type_display()}"


# --- FINANCE ---
class Expense(models.Model):
    TYPES = [
        ('feed', 'Feed'), ('medicine', 'Medicine'), ('labor', 'Labor'),
        ('equipment', 'Equipment'), ('utilities', 'Utilities'), ('transport', 'Transport'),
        ('animal_hire', 'Animal Hire'), ('other', 'Other'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='expenses')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='expenses')
    expense_type = models.CharField(max_length=20, choices=TYPES, default='other')
    description = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    expense_date = models.DateField(default=date.today)
    vendor = models.CharField(max_length=200, blank=True)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHODS, blank=True)
    receipt_url = models.CharField(max_length=255, blank=True)
    hire_agreement = models.ForeignKey(HireAgreement, null=True, blank=True, on_delete=models.SET_NULL, related_name='expenses')
    created_by = models.ForeignKey(FarmUser, null=True, blank=True, on_delete=models.SET_NULL, related_name='expenses')
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-expense_date']

    def __str__(self):
        return f"{self.expense_date} - {self.description}: {self.amount}"


class AnimalSale(models.Model):
    SALE_TYPES = [('direct', 'Direct'), ('auction', 'Auction'), ('contract', 'Contract')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='animal_sales')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='animal_sales')
    animal = models.ForeignKey(Animal, on_delete=models.CASCADE, related_name='sales')
    sale_date = models.DateField(default=date.today)
    sale_type = models.CharField(max_length=10, choices=SALE_TYPES, default='direct')
    customer_name = models.CharField(max_length=200, blank=True)
    customer_contact = models.CharField(max_length=100, blank=True)
    sale_price = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHODS, blank=True)
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUSES, default='pending')
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(FarmUser, null=True, blank=True, on_delete=models.SET_NULL, related_name='animal_sales')
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-sale_date']

    def __str__(self):
        return f"Sale: {self.animal.tag_number} to {self.customer_name or 'Unknown'}"


class ProductSale(models.Model):
    PRODUCT_TYPES = [
        ('milk', 'Milk'), ('eggs', 'Eggs'), ('wool', 'Wool'),
        ('honey', 'Honey'), ('meat', 'Meat'), ('other', 'Other'),
    ]
    UNITS = [('liters', 'Liters'), ('kg', 'Kilograms'), ('pieces', 'Pieces'), ('dozen', 'Dozen')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='product_sales')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='product_sales')
    product_type = models.CharField(max_length=10, choices=PRODUCT_TYPES)
    animal = models.ForeignKey(Animal, null=True, blank=True, on_delete=models.SET_NULL, related_name='product_sales')
    quantity = models.DecimalField(max_digits=10, decimal_places=2)
    unit = models.CharField(max_length=10, choices=UNITS)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, editable=False, default=Decimal('0.00'))
    sale_date = models.DateField(default=date.today)
    customer_name = models.CharField(max_length=200, blank=True)
    customer_contact = models.CharField(max_length=100, blank=True)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHODS, blank=True)
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUSES, default='pending')
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(FarmUser, null=True, blank=True, on_delete=models.SET_NULL, related_name='product_sales')
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-sale_date']

    def __str__(self):
        return f"{self.get_product_type_display()} {self.quantity} {self.unit} on {self.sale_date}"

    def save(self, *args, **kwargs):
        self.total_amount = Decimal(self.quantity) * Decimal(self.unit_price)
        super().save(*args, **kwargs)


class TaxRate(models.Model):
    TAX_TYPES = [
        ('vat', 'VAT'), ('income_tax', 'Income Tax'), ('sales_tax', 'Sales Tax'),
        ('withholding_tax', 'Withholding Tax'), ('custom', 'Custom'),
    ]
    APPLIES_TO = [
        ('all_revenue', 'All Revenue'), ('animal_sales', 'Animal Sales'),
        ('product_sales', 'Product Sales'), ('services', 'Services'), ('custom', 'Custom'),
    ]
    METHODS = [('inclusive', 'Inclusive'), ('exclusive', 'Exclusive')]

    tenant = models.ForeignKey(Tenant, null=True, blank=True, on_delete=models.CASCADE, related_name='tax_rates', help_text="Leave blank for system-wide rates")
    tax_name = models.CharField(max_length=100)
    tax_code = models.CharField(max_length=30)
    tax_type = models.CharField(max_length=20, choices=TAX_TYPES)
    rate_percentage = models.DecimalField(max_digits=5, decimal_places=2)
    applies_to = models.CharField(max_length=20, choices=APPLIES_TO, default='all_revenue')
    calculation_method = models.CharField(max_length=10, choices=METHODS, default='exclusive')
    effective_from = models.DateField()
    effective_to = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    is_system_default = models.BooleanField(default=False)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ['tax_code']

    def __str__(self):
        return f"{self.tax_code} ({self.rate_percentage}%)"

    def is_effective_on(self, on_date):
        if not self.is_active or self.effective_from > on_date:
            return False
        return self.effective_to is None or self.effective_to >= on_date


# --- INVENTORY ---
class InventoryItem(models.Model):
    CATEGORIES = [
        ('feed', 'Feed'), ('medication', 'Medication'), ('equipment', 'Equipment'),
        ('tools', 'Tools'), ('supplies', 'Supplies'), ('bedding', 'Bedding'), ('other', 'Other'),
    ]
    STATUS_CHOICES = [
        ('active', 'Active'), ('low_stock', 'Low Stock'), ('out_of_stock', 'Out of Stock'),
        ('expired', 'Expired'), ('discontinued', 'Discontinued'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='inventory_items')
    farm = models.ForeignKey(Farm, on_delete=models.CASCADE, related_name='inventory_items')
    item_name = models.CharField(max_length=200)
    item_code = models.CharField(max_length=50, blank=True, help_text="SKU or barcode")
    category = models.CharField(max_length=20, choices=CATEGORIES, default='other')
    unit = models.CharField(max_length=20, default='kg', help_text="e.g. kg, liters, bags")
    current_stock = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    reorder_point = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'), help_text="Alert when stock drops to this level")
    reorder_quantity = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    supplier = models.CharField(max_length=200, blank=True)
    location = models.CharField(max_length=100, blank=True)
    expiry_date = models.DateField(null=True, blank=True)
    batch_number = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['item_name']

    def __str__(self):
        return f"{self.item_name} ({self.current_stock} {self.unit})"

    @property
    def total_value(self):
        if self.unit_cost is None:
            return Decimal('0.00')
        return self.current_stock * self.unit_cost

    @property
    def is_low(self):
        return self.current_stock <= self.reorder_point

    def refresh_status(self):
        if self.status == 'discontinued':
            return self.status
        if self.current_stock <= 0:
            self.status = 'out_of_stock'
        elif self.expiry_date and self.expiry_date < date.today():
            self.status = 'expired'
        elif self.is_low:
            self.status = 'low_stock'
        else:
            self.status = 'active'
        return self.status


class InventoryMovement(models.Model):
    TYPES = [('in', 'Stock In'), ('out', 'Stock Out'), ('adjustment', 'Adjustment'), ('transfer', 'Transfer')]

    item = models.ForeignKey(InventoryItem, on_delete=models.CASCADE, related_name='movements')
    movement_type = models.CharField(max_length=10, choices=TYPES)
    quantity = models.DecimalField(max_digits=10, decimal_places=2)
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    reason = models.CharField(max_length=100, blank=True, help_text="e.g. purchase, usage, damaged")
    reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(FarmUser, null=True, blank=True, on_delete=models.SET_NULL, related_name='inventory_movements')
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.get_movement_type_display()} {self.quantity} {self.item.unit} of {self.item.item_name}"

    @property
    def total_cost(self):
        if self.unit_cost is None:
            return None
        return self.quantity * self.unit_cost

    def apply(self):
        """Update the item's stock level for this movement and save it.

        The item row is locked for the read-modify-write, so concurrent
        movements on the same item are applied one after the other.
        """
        with transaction.atomic():
            item = InventoryItem.objects.select_for_update().get(pk=self.item_id)
            if self.movement_type == 'in':
                new_stock = item.current_stock + self.quantity
            elif self.movement_type == 'adjustment':
                new_stock = self.quantity
            else:
                new_stock = item.current_stock - self.quantity
            if new_stock < 0:
                new_stock = Decimal('0.00')
            item.current_stock = new_stock
            item.refresh_status()
            item.save()
        self.item = item
        return item

    @classmethod
    def record(cls, item, **fields):
        """Save a movement and its stock effect together, or neither."""
        with transaction.atomic():
            movement = cls.objects.create(item=item, **fields)
            return movement, movement.apply()
