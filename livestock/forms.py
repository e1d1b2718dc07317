from datetime import date

from django import forms

from .models import (Animal, BreedingRecord, ExternalFarm, ExternalAnimal, Activity, Expense,
    AnimalSale, ProductSale, InventoryMovement, Delegation, Role, FarmUser, Farm, Permission,
    HireAgreement, TaxRate, PAYMENT_METHODS)
from .pedigree import can_breed, get_descendants, find_parentage_descendants


def _animal_label(obj):
    label = obj.tag_number
    if obj.breed:
        label += f" - {obj.breed}"
    return label


class TenantFormMixin:
    """Limits related-object choices to the current tenant's records."""

    def limit_to_tenant(self, tenant):
        querysets = {
            'farm': Farm.objects.filter(tenant=tenant),
            'animal': Animal.objects.filter(tenant=tenant),
            'external_farm': ExternalFarm.objects.filter(tenant=tenant),
            'hire_agreement': HireAgreement.objects.filter(tenant=tenant),
        }
        for name, queryset in querysets.items():
            if name in self.fields:
                self.fields[name].queryset = queryset


class FarmForm(forms.ModelForm):
    class Meta:
        model = Farm
        fields = ['farm_name', 'location', 'district', 'latitude', 'longitude', 'farm_type', 'status']
        widgets = {
            'farm_name': forms.TextInput(attrs={'class': 'form-control', 'placeholder': 'e.g. Main Farm'}),
            'location': forms.TextInput(attrs={'class': 'form-control'}),
            'district': forms.TextInput(attrs={'class': 'form-control'}),
            'latitude': forms.NumberInput(attrs={'class': 'form-control', 'step': 'any'}),
            'longitude': forms.NumberInput(attrs={'class': 'form-control', 'step': 'any'}),
            'farm_type': forms.TextInput(attrs={'class': 'form-control', 'placeholder': 'e.g. dairy'}),
            'status': forms.Select(attrs={'class': 'form-select'}),
        }

    def clean_latitude(self):
        value = self.cleaned_data['latitude']
        if value is not None and not -90 <= value <= 90:
            raise forms.ValidationError("Latitude must be between -90 and 90.")
        return value

    def clean_longitude(self):
        value = self.cleaned_data['longitude']
        if value is not None and not -180 <= value <= 180:
            raise forms.ValidationError("Longitude must be between -180 and 180.")
        return value


class AnimalForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = Animal
        fields = ['farm', 'tag_number', 'animal_type', 'breed', 'gender', 'birth_date',
                  'purchase_date', 'purchase_price', 'status', 'health_status',
                  'mother', 'father', 'external_mother', 'external_father',
                  'breeding_value', 'generation_number', 'parentage_verified', 'notes']
        widgets = {
            'farm': forms.Select(attrs={'class': 'form-select'}),
            'tag_number': forms.TextInput(attrs={'class': 'form-control', 'placeholder': 'e.g. COW-004'}),
            'animal_type': forms.Select(attrs={'class': 'form-select'}),
            'breed': forms.TextInput(attrs={'class': 'form-control', 'placeholder': 'e.g. Holstein'}),
            'gender': forms.Select(attrs={'class': 'form-select'}),
            'birth_date': forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}),
            'purchase_date': forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}),
            'purchase_price': forms.NumberInput(attrs={'class': 'form-control', 'min': 0}),
            'status': forms.Select(attrs={'class': 'form-select'}),
            'health_status': forms.Select(attrs={'class': 'form-select'}),
            'mother': forms.Select(attrs={'class': 'form-select'}),
            'father': forms.Select(attrs={'class': 'form-select'}),
            'external_mother': forms.Select(attrs={'class': 'form-select'}),
            'external_father': forms.Select(attrs={'class': 'form-select'}),
            'breeding_value': forms.NumberInput(attrs={'class': 'form-control', 'min': 0, 'max': 100}),
            'generation_number': forms.NumberInput(attrs={'class': 'form-control', 'min': 1}),
            'parentage_verified': forms.CheckboxInput(attrs={'class': 'form-check-input'}),
            'notes': forms.Textarea(attrs={'class': 'form-control', 'rows': 3}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.limit_to_tenant(tenant)
            herd = Animal.objects.filter(tenant=tenant)
            if self.instance.pk:
                herd = herd.exclude(pk=self.instance.pk)
            self.fields['mother'].queryset = herd.filter(gender='female')
            self.fields['father'].queryset = herd.filter(gender='male')
            outside = ExternalAnimal.objects.filter(external_farm__tenant=tenant)
            self.fields['external_mother'].queryset = outside.exclude(gender='male')
            self.fields['external_father'].queryset = outside.exclude(gender='female')
        for field_name in ['mother', 'father']:
            self.fields[field_name].label_from_instance = _animal_label

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('mother') and cleaned_data.get('external_mother'):
            self.add_error('external_mother', "Choose either a herd dam or an external dam, not both.")
        if cleaned_data.get('father') and cleaned_data.get('external_father'):
            self.add_error('external_father', "Choose either a herd sire or an external sire, not both.")
        birth_date = cleaned_data.get('birth_date')
        if birth_date and birth_date > date.today():
            self.add_error('birth_date', "Birth date cannot be in the future.")

        if self.instance.pk:
            descendant_ids = self._descendant_ids()
            for field_name in ['mother', 'father']:
                parent = cleaned_data.get(field_name)
                if parent and parent.pk in descendant_ids:
                    self.add_error(field_name, f"{parent.tag_number} is a descendant of this animal.")
        return cleaned_data

    def _descendant_ids(self):
        animals = list(Animal.objects.filter(tenant_id=self.instance.tenant_id))
        records = list(BreedingRecord.objects.filter(tenant_id=self.instance.tenant_id).prefetch_related('offspring'))
        found = get_descendants(self.instance.pk, animals, records)
        found += find_parentage_descendants(self.instance.pk, animals)
        return {animal.pk for animal in found}


class CastrationForm(forms.Form):
    castration_date = forms.DateField(widget=forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}))
    method = forms.ChoiceField(choices=[('', '---------')] + Animal.CASTRATION_METHODS,
                               widget=forms.Select(attrs={'class': 'form-select'}))
    description = forms.CharField(max_length=255, widget=forms.TextInput(attrs={'class': 'form-control'}))
    notes = forms.CharField(required=False, widget=forms.Textarea(attrs={'class': 'form-control', 'rows': 2}))
    cost = forms.DecimalField(required=False, min_value=0, max_digits=12, decimal_places=2,
                              widget=forms.NumberInput(attrs={'class': 'form-control'}))

    def __init__(self, *args, animal=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.animal = animal

    def clean_castration_date(self):
        value = self.cleaned_data['castration_date']
        if value > date.today():
            raise forms.ValidationError("Castration date cannot be in the future.")
        return value

    def clean(self):
        cleaned_data = super().clean()
        animal = self.animal
        if animal is None:
            raise forms.ValidationError("Select an animal to castrate.")
        if animal.gender != 'male':
            raise forms.ValidationError("Only male animals can be castrated.")
        if animal.status != 'active':
            raise forms.ValidationError("Only active animals can be castrated.")
        if animal.is_castrated:
            raise forms.ValidationError(f"{animal.tag_number} is already castrated.")
        return cleaned_data


class BreedingRecordForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = BreedingRecord
        fields = ['animal', 'sire_source', 'sire', 'external_sire', 'breeding_date', 'breeding_method',
                  'conception_date', 'expected_due_date', 'pregnancy_status', 'hire_agreement', 'notes']
        widgets = {
            'animal': forms.Select(attrs={'class': 'form-select'}),
            'sire_source': forms.Select(attrs={'class': 'form-select'}),
            'sire': forms.Select(attrs={'class': 'form-select'}),
            'external_sire': forms.Select(attrs={'class': 'form-select'}),
            'breeding_date': forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}),
            'breeding_method': forms.Select(attrs={'class': 'form-select'}),
            'conception_date': forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}),
            'expected_due_date': forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}),
            'pregnancy_status': forms.Select(attrs={'class': 'form-select'}),
            'hire_agreement': forms.Select(attrs={'class': 'form-select'}),
            'notes': forms.Textarea(attrs={'class': 'form-control', 'rows': 2}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.limit_to_tenant(tenant)
            herd = Animal.objects.filter(tenant=tenant, status='active')
            self.fields['animal'].queryset = herd.filter(gender='female')
            self.fields['sire'].queryset = herd.filter(gender='male', is_castrated=False)
            self.fields['external_sire'].queryset = ExternalAnimal.objects.filter(
                external_farm__tenant=tenant).exclude(gender='female')
        self.fields['animal'].label_from_instance = _animal_label
        self.fields['sire'].label_from_instance = _animal_label

    def clean(self):
        cleaned_data = super().clean()
        dam = cleaned_data.get('animal')
        sire = cleaned_data.get('sire')
        external_sire = cleaned_data.get('external_sire')
        source = cleaned_data.get('sire_source')

        if dam and dam.gender != 'female':
            self.add_error('animal', "The dam must be a female animal.")
        if source == 'internal':
            if not sire:
                self.add_error('sire', "Select a sire from your herd.")
            elif sire.gender != 'male' or not can_breed(sire):
                self.add_error('sire', "The sire must be an intact male.")
            if external_sire:
                self.add_error('external_sire', "Leave the external sire empty for an internal breeding.")
        elif source == 'external':
            if not external_sire:
                self.add_error('external_sire', "Select the external sire.")
            if sire:
                self.add_error('sire', "Leave the herd sire empty for an external breeding.")
        if dam and sire and dam.animal_type != sire.animal_type:
            self.add_error('sire', "Sire and dam must be the same animal type.")
        return cleaned_data


class BirthRecordForm(forms.Form):
    actual_birth_date = forms.DateField(widget=forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}))
    birth_outcome = forms.ChoiceField(choices=BreedingRecord.OUTCOMES, widget=forms.Select(attrs={'class': 'form-select'}))
    offspring_count = forms.IntegerField(min_value=0, widget=forms.NumberInput(attrs={'class': 'form-control'}))
    complications = forms.CharField(required=False, widget=forms.Textarea(attrs={'class': 'form-control', 'rows': 2}))

    def clean_actual_birth_date(self):
        value = self.cleaned_data['actual_birth_date']
        if value > date.today():
            raise forms.ValidationError("Birth date cannot be in the future.")
        return value


class ExternalFarmForm(forms.ModelForm):
    class Meta:
        model = ExternalFarm
        fields = ['farm_name', 'owner_name', 'contact_person', 'phone', 'email', 'location',
                  'district', 'farm_type', 'notes']
        widgets = {
            'notes': forms.Textarea(attrs={'rows': 2}),
        }


class ExternalAnimalForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = ExternalAnimal
        fields = ['external_farm', 'tag_number', 'animal_type', 'breed', 'gender', 'age_years',
                  'weight_kg', 'health_status', 'health_certificate_available',
                  'health_certificate_expiry', 'notes']
        widgets = {
            'health_certificate_expiry': forms.DateInput(attrs={'type': 'date'}),
            'notes': forms.Textarea(attrs={'rows': 2}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.limit_to_tenant(tenant)


class HireAgreementForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = HireAgreement
        fields = ['farm', 'agreement_type', 'external_farm', 'animal', 'external_animal', 'start_date',
                  'end_date', 'hire_fee', 'payment_schedule', 'terms']
        widgets = {
            'start_date': forms.DateInput(attrs={'type': 'date'}),
            'end_date': forms.DateInput(attrs={'type': 'date'}),
            'terms': forms.Textarea(attrs={'rows': 2}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.limit_to_tenant(tenant)
            self.fields['animal'].queryset = Animal.objects.filter(tenant=tenant, status='active')
            self.fields['external_animal'].queryset = ExternalAnimal.objects.filter(external_farm__tenant=tenant)
        self.fields['animal'].label_from_instance = _animal_label

    def clean_hire_fee(self):
        fee = self.cleaned_data['hire_fee']
        if fee <= 0:
            raise forms.ValidationError("Hire fee must be greater than zero.")
        return fee

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('start_date')
        end = cleaned_data.get('end_date')
        if start and end and end < start:
            self.add_error('end_date', "End date must be on or after the start date.")

        agreement_type = cleaned_data.get('agreement_type')
        animal = cleaned_data.get('animal')
        external_animal = cleaned_data.get('external_animal')
        external_farm = cleaned_data.get('external_farm')
        if agreement_type == 'hire_in':
            if not external_animal:
                self.add_error('external_animal', "Select the animal you are hiring in.")
            elif external_farm and external_animal.external_farm_id != external_farm.pk:
                self.add_error('external_animal', "That animal belongs to a different external farm.")
            if animal:
                self.add_error('animal', "Leave your own animal empty when hiring in.")
        elif agreement_type == 'hire_out':
            if not animal:
                self.add_error('animal', "Select the animal you are hiring out.")
            if external_animal:
                self.add_error('external_animal', "Leave the external animal empty when hiring out.")
        return cleaned_data


class HirePaymentForm(forms.Form):
    amount = forms.DecimalField(max_digits=12, decimal_places=2, widget=forms.NumberInput(attrs={'class': 'form-control'}))
    payment_date = forms.DateField(widget=forms.DateInput(attrs={'type': 'date', 'class': 'form-control'}))
    payment_method = forms.ChoiceField(required=False, choices=[('', '---------')] + PAYMENT_METHODS,
                                       widget=forms.Select(attrs={'class': 'form-select'}))
    payment_reference = forms.CharField(required=False, max_length=100, widget=forms.TextInput(attrs={'class': 'form-control'}))

    def __init__(self, *args, agreement=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.agreement = agreement

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount <= 0:
            raise forms.ValidationError("Payment amount must be greater than zero.")
        return amount

    def clean_payment_date(self):
        value = self.cleaned_data['payment_date']
        if value > date.today():
            raise forms.ValidationError("Payment date cannot be in the future.")
        return value

    def clean(self):
        cleaned_data = super().clean()
        agreement = self.agreement
        amount = cleaned_data.get('amount')
        if agreement is not None:
            if agreement.status == 'cancelled':
                raise forms.ValidationError("Payments cannot be recorded on a cancelled agreement.")
            if amount and amount > agreement.outstanding_amount:
                self.add_error('amount', f"Payment exceeds the outstanding balance of {agreement.outstanding_amount}.")
        return cleaned_data


class ActivityForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = Activity
        fields = ['farm', 'activity_type', 'animal', 'description', 'activity_date', 'cost', 'notes']
        widgets = {
            'activity_date': forms.DateInput(attrs={'type': 'date'}),
            'notes': forms.Textarea(attrs={'rows': 2}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.limit_to_tenant(tenant)
        # Castrations go through the dedicated form so the animal gets updated
        self.fields['activity_type'].choices = [
            c for c in self.fields['activity_type'].choices if c[0] != 'castration'
        ]


class ExpenseForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = Expense
        fields = ['farm', 'expense_type', 'description', 'amount', 'expense_date', 'vendor', 'payment_method', 'receipt_url']
        widgets = {
            'expense_date': forms.DateInput(attrs={'type': 'date'}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.limit_to_tenant(tenant)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount <= 0:
            raise forms.ValidationError("Amount must be greater than zero.")
        return amount


class AnimalSaleForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = AnimalSale
        fields = ['animal', 'sale_date', 'sale_type', 'customer_name', 'customer_contact',
                  'sale_price', 'payment_method', 'payment_status', 'notes']
        widgets = {
            'sale_date': forms.DateInput(attrs={'type': 'date'}),
            'notes': forms.Textarea(attrs={'rows': 2}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.fields['animal'].queryset = Animal.objects.filter(tenant=tenant, status='active')
        self.fields['animal'].label_from_instance = _animal_label

    def clean_sale_price(self):
        price = self.cleaned_data['sale_price']
        if price <= 0:
            raise forms.ValidationError("Sale price must be greater than zero.")
        return price


class ProductSaleForm(TenantFormMixin, forms.ModelForm):
    class Meta:
        model = ProductSale
        fields = ['farm', 'product_type', 'animal', 'quantity', 'unit', 'unit_price', 'sale_date',
                  'customer_name', 'customer_contact', 'payment_method', 'payment_status', 'notes']
        widgets = {
            'sale_date': forms.DateInput(attrs={'type': 'date'}),
            'notes': forms.Textarea(attrs={'rows': 2}),
        }

    def __init__(self, *args, tenant=None, **kwargs):
        super().__init__(*args, **kwargs)
        if tenant is not None:
            self.limit_to_tenant(tenant)


class TaxRateForm(forms.ModelForm):
    class Meta:
        model = TaxRate
        fields = ['tax_name', 'tax_code', 'tax_type', 'rate_percentage', 'applies_to', 'calculation_method',
                  'effective_from', 'effective_to', 'is_active', 'description']
        widgets = {
            'effective_from': forms.DateInput(attrs={'type': 'date'}),
            'effective_to': forms.DateInput(attrs={'type': 'date'}),
            'description': forms.Textarea(attrs={'rows': 2}),
        }

    def clean_rate_percentage(self):
        rate = self.cleaned_data['rate_percentage']
        if not 0 <= rate <= 100:
            raise forms.ValidationError("Rate must be between 0 and 100 percent.")
        return rate

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('effective_from')
        end = cleaned_data.get('effective_to')
        if start and end and end < start:
            self.add_error('effective_to', "The rate cannot end before it takes effect.")
        return cleaned_data


class InventoryMovementForm(forms.ModelForm):
    class Meta:
        model = InventoryMovement
        fields = ['movement_type', 'quantity', 'unit_cost', 'reason', 'reference_number', 'notes']
        widgets = {
            'notes': forms.Textarea(attrs={'rows': 2}),
        }

    def clean_quantity(self):
        quantity = self.cleaned_data['quantity']
        if quantity < 0:
            raise forms.ValidationError("Quantity cannot be negative.")
        return quantity


class DelegationForm(forms.ModelForm):
    class Meta:
        model = Delegation
        fields = ['delegate', 'delegation_type', 'delegated_permissions', 'delegated_role',
                  'start_date', 'end_date', 'description']
        widgets = {
            'start_date': forms.DateTimeInput(attrs={'type': 'datetime-local'}, format='%Y-%m-%dT%H:%M'),
            'end_date': forms.DateTimeInput(attrs={'type': 'datetime-local'}, format='%Y-%m-%dT%H:%M'),
            'delegated_permissions': forms.CheckboxSelectMultiple,
        }

    def __init__(self, *args, tenant=None, delegator=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.delegator = delegator
        users = FarmUser.objects.filter(tenant=tenant, account_status='active')
        if delegator is not None:
            users = users.exclude(pk=delegator.pk)
        self.fields['delegate'].queryset = users
        self.fields['delegated_role'].queryset = Role.objects.filter(tenant=tenant)

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('start_date')
        end = cleaned_data.get('end_date')
        if start and end and end < start:
            self.add_error('end_date', "End date must be on or after the start date.")

        delegate = cleaned_data.get('delegate')
        if delegate and self.delegator and delegate.pk == self.delegator.pk:
            self.add_error('delegate', "You cannot delegate to yourself.")

        delegation_type = cleaned_data.get('delegation_type')
        if delegation_type == 'permission' and not cleaned_data.get('delegated_permissions'):
            self.add_error('delegated_permissions', "Pick at least one permission to delegate.")
        if delegation_type == 'role' and not cleaned_data.get('delegated_role'):
            self.add_error('delegated_role', "Pick the role to delegate.")
        return cleaned_data


class RoleForm(forms.ModelForm):
    class Meta:
        model = Role
        fields = ['name', 'description', 'template', 'permissions']
        widgets = {
            'permissions': forms.CheckboxSelectMultiple,
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['permissions'].queryset = Permission.objects.all()
