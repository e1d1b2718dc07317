from django.contrib import admin
from .models import (Permission, RoleTemplate, SubscriptionPlan, Tenant, TenantSubscription, FarmUser,
    Role, Farm, Delegation, AuditLog, Animal, ExternalFarm, ExternalAnimal, BreedingRecord,
    HireAgreement, Activity, Expense, AnimalSale, ProductSale, InventoryItem, InventoryMovement, TaxRate)

@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ('name', 'display_name', 'category', 'action', 'resource_type')
    list_filter = ('category',)
    search_fields = ('name', 'display_name')

@admin.register(RoleTemplate)
class RoleTemplateAdmin(admin.ModelAdmin):
    list_display = ('display_name', 'name', 'category')
    filter_horizontal = ('permissions',)

@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = ('name', 'price', 'max_users', 'max_farms', 'max_animals', 'status')

@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ('organization_name', 'owner', 'plan', 'created_at')
    search_fields = ('organization_name',)

@admin.register(TenantSubscription)
class TenantSubscriptionAdmin(admin.ModelAdmin):
    list_display = ('tenant', 'plan', 'status', 'payment_status', 'end_date', 'days_remaining')
    list_filter = ('status', 'payment_status', 'plan')

@admin.register(FarmUser)
class FarmUserAdmin(admin.ModelAdmin):
    list_display = ('full_name', 'email', 'tenant', 'account_status', 'is_super_admin')
    list_filter = ('account_status', 'is_super_admin', 'tenant')
    search_fields = ('email', 'first_name', 'last_name')
    filter_horizontal = ('roles',)

@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant', 'template')
    list_filter = ('tenant',)
    filter_horizontal = ('permissions',)

@admin.register(Farm)
class FarmAdmin(admin.ModelAdmin):
    list_display = ('farm_name', 'tenant', 'location', 'district', 'status')
    list_filter = ('status', 'tenant')

@admin.register(Delegation)
class DelegationAdmin(admin.ModelAdmin):
    list_display = ('delegator', 'delegate', 'delegation_type', 'start_date', 'end_date', 'status')
    list_filter = ('status', 'delegation_type')
    filter_horizontal = ('delegated_permissions',)

@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('logged_at', 'user', 'action', 'entity_type', 'entity_id', 'tenant')
    list_filter = ('action', 'entity_type', 'tenant')

@admin.register(Animal)
class AnimalAdmin(admin.ModelAdmin):
    list_display = ('tag_number', 'animal_type', 'breed', 'gender_label', 'status', 'display_age', 'mother', 'father')
    list_filter = ('animal_type', 'status', 'gender', 'is_castrated', 'tenant')
    search_fields = ('tag_number', 'breed', 'notes')
    # Searchable dropdowns for parents
    autocomplete_fields = ['mother', 'father']

@admin.register(ExternalFarm)
class ExternalFarmAdmin(admin.ModelAdmin):
    list_display = ('farm_name', 'owner_name', 'phone', 'district', 'is_active')
    search_fields = ('farm_name', 'owner_name')

@admin.register(ExternalAnimal)
class ExternalAnimalAdmin(admin.ModelAdmin):
    list_display = ('tag_number', 'external_farm', 'animal_type', 'breed', 'gender', 'certificate_valid')
    list_filter = ('animal_type', 'external_farm')

@admin.register(BreedingRecord)
class BreedingRecordAdmin(admin.ModelAdmin):
    list_display = ('animal', 'sire_display', 'breeding_date', 'expected_due_date', 'pregnancy_status')
    list_filter = ('pregnancy_status', 'sire_source', 'breeding_method')
    filter_horizontal = ('offspring',)

@admin.register(HireAgreement)
class HireAgreementAdmin(admin.ModelAdmin):
    list_display = ('__str__', 'external_farm', 'start_date', 'end_date', 'hire_fee', 'paid_amount', 'payment_status')
    list_filter = ('agreement_type', 'payment_status', 'status')

@admin.register(Activity)
class ActivityAdmin(admin.ModelAdmin):
    list_display = ('activity_date', 'activity_type', 'animal', 'short_description', 'performed_by')
    list_filter = ('activity_type', 'farm')

    def short_description(self, obj):
        return obj.description[:50]

@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ('expense_date', 'expense_type', 'description', 'amount', 'vendor')
    list_filter = ('expense_type', 'farm')

@admin.register(AnimalSale)
class AnimalSaleAdmin(admin.ModelAdmin):
    list_display = ('sale_date', 'animal', 'customer_name', 'sale_price', 'payment_status')
    list_filter = ('payment_status', 'sale_type')

@admin.register(ProductSale)
class ProductSaleAdmin(admin.ModelAdmin):
    list_display = ('sale_date', 'product_type', 'quantity', 'unit', 'total_amount', 'payment_status')
    list_filter = ('product_type', 'payment_status')

@admin.register(InventoryItem)
class InventoryItemAdmin(admin.ModelAdmin):
    list_display = ('item_name', 'category', 'current_stock', 'unit', 'reorder_point', 'status', 'is_low')
    list_filter = ('category', 'status')
    search_fields = ('item_name', 'item_code')

@admin.register(InventoryMovement)
class InventoryMovementAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'item', 'movement_type', 'quantity', 'reason')
    list_filter = ('movement_type',)

@admin.register(TaxRate)
class TaxRateAdmin(admin.ModelAdmin):
    list_display = ('tax_code', 'tax_name', 'rate_percentage', 'applies_to', 'calculation_method', 'is_active')
    list_filter = ('tax_type', 'applies_to', 'is_active')
