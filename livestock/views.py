from django.shortcuts import render, get_object_or_404, redirect
from django.utils import timezone
from datetime import date
from functools import wraps
from collections import Counter, OrderedDict
from django.db.models import F, Q, Count, Sum
from django.http import JsonResponse, HttpResponse, Http404
from django.views.decorators.http import require_POST
from django.urls import reverse
from django.contrib import messages
from django.conf import settings
from django.db import transaction
import csv
import logging
import qrcode
from io import BytesIO
import base64
from .forms import (AnimalForm, CastrationForm, BreedingRecordForm, BirthRecordForm, ExternalFarmForm,
    ExternalAnimalForm, ActivityForm, ExpenseForm, AnimalSaleForm, ProductSaleForm,
    InventoryMovementForm, DelegationForm, RoleForm, FarmForm, HireAgreementForm, HirePaymentForm, TaxRateForm)
from .models import (Animal, Farm, BreedingRecord, ExternalFarm, ExternalAnimal, HireAgreement, Activity,
    Expense, AnimalSale, ProductSale, InventoryItem, InventoryMovement, Delegation, AuditLog, FarmUser, Role,
    Permission, RoleTemplate, Tenant, TenantSubscription, TaxRate, PAYMENT_STATUSES)
from . import analytics
from . import finance
from . import pedigree
from .middleware import SESSION_KEY
from .permissions import (ROLE_DISPLAY_NAMES, role_features, primary_role, role_homepage,
    can_access_feature)

logger = logging.getLogger(__name__)

MAX_PEDIGREE_GENERATIONS = 5
DEFAULT_PEDIGREE_GENERATIONS = 3


# --- HELPER FUNCTIONS ---
def get_common_context(request):
    """Context every page needs: the current user and what they may do."""
    user = getattr(request, 'farm_user', None)
    role = primary_role(user)
    return {
        'farm_user': user,
        'features': role_features(user),
        'primary_role': role,
        'role_display': ROLE_DISPLAY_NAMES.get(role, ''),
        'currency': settings.HERDBOOK_CURRENCY,
    }


def farm_user_required(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if getattr(request, 'farm_user', None) is None:
            return redirect('choose_user')
        return view(request, *args, **kwargs)
    return wrapper


def scoped(queryset, request, field='tenant'):
    """Limit a queryset to the current user's tenant. Super admins see everything."""
    user = request.farm_user
    if user.is_super_admin:
        return queryset
    return queryset.filter(**{field: user.tenant})


def get_herd(animal):
    """The animal's whole tenant herd, as the pedigree helpers expect it."""
    animals = list(Animal.objects.filter(tenant=animal.tenant))
    external_animals = list(
        ExternalAnimal.objects.filter(external_farm__tenant=animal.tenant).select_related('external_farm')
    )
    return animals, external_animals


def get_breeding_records(tenant):
    return list(BreedingRecord.objects.filter(tenant=tenant).prefetch_related('offspring'))


def parse_generations(value):
    try:
        generations = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PEDIGREE_GENERATIONS
    return max(1, min(generations, MAX_PEDIGREE_GENERATIONS))


def animal_summary(animal):
    return {
        'animal_id': animal.pk,
        'tag_number': animal.tag_number,
        'animal_type': animal.animal_type,
        'breed': animal.breed,
        'gender': animal.gender,
        'gender_label': animal.gender_label,
        'birth_date': animal.birth_date,
        'status': animal.status,
        'breeding_value': animal.breeding_value,
    }


def serialize_pedigree(report):
    data = dict(report)
    data['subject_animal'] = animal_summary(report['subject_animal'])
    data['common_ancestors'] = [animal_summary(a) for a in report['common_ancestors']]
    return data


# --- CHOOSE USER ---
def choose_user(request):
    if request.method == 'POST':
        user_id = request.POST.get('user_id', '')
        if not user_id.isdigit():
            messages.error(request, 'Pick a user from the list.')
            return redirect('choose_user')
        user = get_object_or_404(FarmUser, pk=int(user_id))
        request.session[SESSION_KEY] = user.pk
        messages.success(request, f'Signed in as {user.full_name}.')
        return redirect(role_homepage(user))

    users = FarmUser.objects.select_related('tenant').order_by('pk')
    user_rows = []
    for user in users:
        role = primary_role(user)
        user_rows.append({'user': user, 'role': ROLE_DISPLAY_NAMES.get(role, role)})
    context = get_common_context(request)
    context['user_rows'] = user_rows
    return render(request, 'livestock/choose_user.html', context)


@require_POST
def switch_user(request):
    request.session.pop(SESSION_KEY, None)
    return redirect('choose_user')


# --- DASHBOARD ---
@farm_user_required
def dashboard(request):
    context = get_common_context(request)
    now = timezone.now()

    animals = scoped(Animal.objects.all(), request)
    by_type = Counter(animals.values_list('animal_type', flat=True))
    by_status = Counter(animals.values_list('status', flat=True))
    type_labels = dict(Animal.ANIMAL_TYPES)

    pregnancies = scoped(BreedingRecord.objects.filter(
        pregnancy_status__in=['suspected', 'confirmed'],
    ), request).select_related('animal').order_by('expected_due_date')
    due_soon = [r for r in pregnancies if r.is_due_soon]

    low_stock_items = scoped(InventoryItem.objects.filter(
        current_stock__lte=F('reorder_point'),
    ), request).exclude(status='discontinued')

    active_delegations = scoped(Delegation.objects.filter(
        status='active', start_date__lte=now, end_date__gte=now,
    ), request).select_related('delegator', 'delegate')

    recent_activities = scoped(Activity.objects.all(), request).select_related('animal', 'performed_by')[:10]

    context.update({
        'animal_count': animals.count(),
        'active_count': by_status.get('active', 0),
        'animals_by_type': [(type_labels.get(t, t), n) for t, n in sorted(by_type.items())],
        'animals_by_status': sorted(by_status.items()),
        'pregnancy_count': len(pregnancies),
        'due_soon': due_soon,
        'low_stock_items': low_stock_items,
        'active_delegations': active_delegations,
        'recent_activities': recent_activities,
        'has_alerts': bool(due_soon) or low_stock_items.exists(),
    })
    return render(request, 'livestock/dashboard.html', context)


# --- ANIMALS ---
@farm_user_required
def animal_list(request):
    animals = scoped(Animal.objects.all(), request).select_related('farm', 'mother', 'father')

    animal_type = request.GET.get('type', '')
    status = request.GET.get('status', '')
    farm_id = request.GET.get('farm', '')
    search = request.GET.get('q', '').strip()
    if animal_type:
        animals = animals.filter(animal_type=animal_type)
    if status:
        animals = animals.filter(status=status)
    if farm_id.isdigit():
        animals = animals.filter(farm_id=int(farm_id))
    if search:
        animals = animals.filter(Q(tag_number__icontains=search) | Q(breed__icontains=search))

    context = get_common_context(request)
    context.update({
        'animals': animals,
        'farms': scoped(Farm.objects.all(), request),
        'type_choices': Animal.ANIMAL_TYPES,
        'status_choices': Animal.STATUS_CHOICES,
        'filters': {'type': animal_type, 'status': status, 'farm': farm_id, 'q': search},
    })
    return render(request, 'livestock/animal_list.html', context)


@farm_user_required
def animal_detail(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.select_related(
        'farm', 'mother', 'father', 'external_mother', 'external_father'), request), pk=animal_id)

    animals, _ = get_herd(animal)
    records = get_breeding_records(animal.tenant)
    descendants = pedigree.get_descendants(animal.pk, animals, records)
    try:
        generation = pedigree.calculate_generation_number(animal.pk, animals)
    except pedigree.PedigreeCycleError:
        logger.warning("Parent cycle found in ancestry of animal %s", animal.pk)
        messages.warning(request, 'This animal appears in its own ancestry. Check the recorded parents.')
        generation = None

    breeding_history = BreedingRecord.objects.filter(
        Q(animal=animal) | Q(sire=animal)
    ).select_related('animal', 'sire', 'external_sire__external_farm')

    context = get_common_context(request)
    castration_form = None
    if context['features']['log_castration'] and animal.gender == 'male' and not animal.is_castrated:
        castration_form = CastrationForm(animal=animal)
    context.update({
        'animal': animal,
        'descendants': descendants,
        'generation_number': generation,
        'breeding_history': breeding_history,
        'activities': animal.activities.select_related('performed_by')[:20],
        'castration_form': castration_form,
    })
    return render(request, 'livestock/animal_detail.html', context)


@farm_user_required
def add_animal(request):
    tenant = request.farm_user.tenant
    if tenant is None:
        messages.error(request, 'Choose a tenant user to add animals.')
        return redirect('animal_list')
    if request.method == 'POST':
        form = AnimalForm(request.POST, tenant=tenant)
        if form.is_valid():
            limit = tenant.plan.max_animals if tenant.plan else -1
            if tenant.plan and not tenant.plan.allows(limit, tenant.animals.count()):
                messages.error(request, f'Your {tenant.plan.name} plan allows {limit} animals.')
                return redirect('animal_list')
            animal = form.save(commit=False)
            animal.tenant = tenant
            animal.save()
            messages.success(request, f'{animal.tag_number} added to the herd!')
            return redirect('animal_detail', animal_id=animal.pk)
    else:
        form = AnimalForm(tenant=tenant)
    context = get_common_context(request)
    context.update({'form': form, 'title': 'Add Animal'})
    return render(request, 'livestock/animal_form.html', context)


@farm_user_required
def edit_animal(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.all(), request), pk=animal_id)
    if not can_access_feature(request.farm_user, 'edit_animals'):
        messages.error(request, 'You do not have permission to edit animals.')
        return redirect('animal_detail', animal_id=animal.pk)
    if request.method == 'POST':
        form = AnimalForm(request.POST, instance=animal, tenant=animal.tenant)
        if form.is_valid():
            form.save()
            messages.success(request, f'{animal.tag_number} updated.')
            return redirect('animal_detail', animal_id=animal.pk)
    else:
        form = AnimalForm(instance=animal, tenant=animal.tenant)
    context = get_common_context(request)
    context.update({'form': form, 'animal': animal, 'title': f'Edit {animal.tag_number}'})
    return render(request, 'livestock/animal_form.html', context)


@require_POST
@farm_user_required
def delete_animal(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.all(), request), pk=animal_id)
    if not can_access_feature(request.farm_user, 'delete_animals'):
        messages.error(request, 'Only the farm owner can delete animals.')
        return redirect('animal_detail', animal_id=animal.pk)
    tag = animal.tag_number
    animal.delete()
    logger.info("Animal %s deleted by %s", tag, request.farm_user.email)
    messages.success(request, f'{tag} deleted.')
    return redirect('animal_list')


@farm_user_required
def castrate_animal(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.all(), request), pk=animal_id)
    if not can_access_feature(request.farm_user, 'log_castration'):
        messages.error(request, 'You do not have permission to log castrations.')
        return redirect('animal_detail', animal_id=animal.pk)

    if request.method == 'POST':
        form = CastrationForm(request.POST, animal=animal)
        if form.is_valid():
            data = form.cleaned_data
            label_before = animal.gender_label
            animal.is_castrated = True
            animal.castration_date = data['castration_date']
            animal.castration_method = data['method']
            animal.castration_notes = data['notes']
            animal.save()
            Activity.objects.create(
                tenant=animal.tenant,
                farm=animal.farm,
                activity_type='castration',
                animal=animal,
                description=data['description'],
                activity_date=data['castration_date'],
                performed_by=request.farm_user,
                cost=data['cost'],
                notes=data['notes'],
                metadata={
                    'method': data['method'],
                    'label_before': label_before,
                    'label_after': animal.gender_label,
                },
            )
            logger.info("Castration of %s logged by %s", animal.tag_number, request.farm_user.email)
            messages.success(request, f'{animal.tag_number} castrated - now recorded as a {animal.gender_label}.')
            return redirect('animal_detail', animal_id=animal.pk)
    else:
        form = CastrationForm(animal=animal, initial={'castration_date': date.today()})
    context = get_common_context(request)
    context.update({'animal': animal, 'form': form})
    return render(request, 'livestock/castration_form.html', context)


@farm_user_required
def animal_tag_card(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.select_related('farm'), request), pk=animal_id)
    animal_url = request.build_absolute_uri(reverse('animal_detail', args=[animal.pk]))

    qr = qrcode.QRCode(version=1, error_correction=qrcode.constants.ERROR_CORRECT_L, box_size=10, border=4)
    qr.add_data(animal_url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    img_str = base64.b64encode(buffer.getvalue()).decode()

    return render(request, 'livestock/tag_card.html', {'animal': animal, 'qr_code': img_str})


# --- FARMS ---
@farm_user_required
def farm_list(request):
    tenant = request.farm_user.tenant
    farms = scoped(Farm.objects.select_related('tenant'), request).annotate(
        num_animals=Count('animals', distinct=True)).order_by('farm_name')
    plan = tenant.plan if tenant else None
    context = get_common_context(request)
    context.update({
        'farms': farms,
        'plan': plan,
        'can_add': plan.allows(plan.max_farms, tenant.farms.count()) if plan else tenant is not None,
    })
    return render(request, 'livestock/farms.html', context)


@farm_user_required
def add_farm(request):
    tenant = request.farm_user.tenant
    if tenant is None or not can_access_feature(request.farm_user, 'manage_farms'):
        messages.error(request, 'Only the farm owner can add farms.')
        return redirect('farm_list')
    if tenant.plan and not tenant.plan.allows(tenant.plan.max_farms, tenant.farms.count()):
        messages.error(request, f'Your {tenant.plan.name} plan allows {tenant.plan.max_farms} farms.')
        return redirect('farm_list')
    if request.method == 'POST':
        form = FarmForm(request.POST)
        if form.is_valid():
            farm = form.save(commit=False)
            farm.tenant = tenant
            farm.save()
            logger.info("Farm %s added by %s", farm.farm_name, request.farm_user.email)
            messages.success(request, f'{farm.farm_name} added.')
            return redirect('farm_list')
    else:
        form = FarmForm()
    context = get_common_context(request)
    context.update({'form': form, 'title': 'Add Farm'})
    return render(request, 'livestock/farm_form.html', context)


@farm_user_required
def edit_farm(request, farm_id):
    farm = get_object_or_404(scoped(Farm.objects.all(), request), pk=farm_id)
    if not can_access_feature(request.farm_user, 'manage_farms'):
        messages.error(request, 'Only the farm owner can edit farms.')
        return redirect('farm_list')
    if request.method == 'POST':
        form = FarmForm(request.POST, instance=farm)
        if form.is_valid():
            form.save()
            messages.success(request, f'{farm.farm_name} updated.')
            return redirect('farm_list')
    else:
        form = FarmForm(instance=farm)
    context = get_common_context(request)
    context.update({'form': form, 'farm': farm, 'title': f'Edit {farm.farm_name}'})
    return render(request, 'livestock/farm_form.html', context)


# =====================================================
# LINEAGE & PEDIGREE
# =====================================================

@farm_user_required
def animal_pedigree(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.all(), request), pk=animal_id)
    generations = parse_generations(request.GET.get('generations'))
    animals, external_animals = get_herd(animal)
    records = get_breeding_records(animal.tenant)

    report = pedigree.build_pedigree_data(animal.pk, generations, animals, external_animals, records)
    diversity = pedigree.analyze_genetic_diversity(animal.pk, animals, external_animals)
    mates = pedigree.find_optimal_mates(animal.pk, animals, records)[:5]
    for match in mates:
        if animal.gender == 'female':
            match['predicted_traits'] = pedigree.predict_offspring_traits(animal, match['animal'])
        else:
            match['predicted_traits'] = pedigree.predict_offspring_traits(match['animal'], animal)

    context = get_common_context(request)
    context.update({
        'animal': animal,
        'report': report,
        'diversity': diversity,
        'mates': mates,
        'generations': generations,
        'generation_choices': range(1, MAX_PEDIGREE_GENERATIONS + 1),
    })
    return render(request, 'livestock/pedigree.html', context)


@farm_user_required
def api_animal_pedigree(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.all(), request), pk=animal_id)
    raw = request.GET.get('generations', DEFAULT_PEDIGREE_GENERATIONS)
    try:
        generations = int(raw)
    except (TypeError, ValueError):
        return JsonResponse({'status': 'error', 'message': 'generations must be an integer'}, status=400)
    if not 0 <= generations <= MAX_PEDIGREE_GENERATIONS:
        return JsonResponse({'status': 'error', 'message': f'generations must be between 0 and {MAX_PEDIGREE_GENERATIONS}'}, status=400)

    animals, external_animals = get_herd(animal)
    try:
        report = pedigree.build_pedigree_data(animal.pk, generations, animals, external_animals)
    except pedigree.AnimalNotFound:
        raise Http404("Animal not found")
    return JsonResponse({'status': 'success', 'pedigree': serialize_pedigree(report)})


@farm_user_required
def api_optimal_mates(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.all(), request), pk=animal_id)
    animals, _ = get_herd(animal)
    results = []
    for match in pedigree.find_optimal_mates(animal.pk, animals):
        results.append({
            'animal': animal_summary(match['animal']),
            'compatibility_score': match['compatibility_score'],
            'reasons': match['reasons'],
            'expected_inbreeding': match['expected_inbreeding'],
        })
    return JsonResponse({'status': 'success', 'mates': results})


@farm_user_required
def api_inbreeding_risk(request, animal_id):
    animal = get_object_or_404(scoped(Animal.objects.all(), request), pk=animal_id)
    try:
        mate_id = int(request.GET['mate'])
    except KeyError:
        return JsonResponse({'status': 'error', 'message': 'mate is required'}, status=400)
    except ValueError:
        return JsonResponse({'status': 'error', 'message': 'mate must be an animal id'}, status=400)

    animals, external_animals = get_herd(animal)
    risk = pedigree.assess_inbreeding_risk(animal.pk, mate_id, animals, external_animals)
    risk['common_ancestors'] = [animal_summary(a) for a in risk['common_ancestors']]
    return JsonResponse({'status': 'success', 'risk': risk})


# =====================================================
# BREEDING
# =====================================================

@farm_user_required
def breeding_dashboard(request):
    records = scoped(BreedingRecord.objects.all(), request).select_related(
        'animal', 'sire', 'external_sire__external_farm')
    active = [r for r in records if r.is_active_pregnancy]
    history = [r for r in records if not r.is_active_pregnancy]
    today = date.today()
    for record in active:
        record.days_until = (record.expected_due_date - today).days if record.expected_due_date else None

    context = get_common_context(request)
    context.update({
        'active_pregnancies': active,
        'history': history,
        'due_soon_count': sum(1 for r in active if r.is_due_soon),
        'birth_form': BirthRecordForm(initial={'actual_birth_date': today}),
    })
    return render(request, 'livestock/breeding.html', context)


@farm_user_required
def breeding_analytics(request):
    records = list(scoped(BreedingRecord.objects.all(), request).select_related('animal', 'hire_agreement'))
    animal_type = request.GET.get('type', '')
    season = request.GET.get('season', '')
    year = request.GET.get('year', '')
    if season not in ('dry', 'wet'):
        season = ''
    if not year.isdigit():
        year = ''

    context = get_common_context(request)
    context.update({
        'sire_stats': analytics.sire_source_stats(records),
        'births': analytics.birth_rate_stats(records, animal_type=animal_type, season=season, year=year),
        'type_choices': Animal.ANIMAL_TYPES,
        'filters': {'type': animal_type, 'season': season, 'year': year},
    })
    return render(request, 'livestock/breeding_analytics.html', context)


@farm_user_required
def add_breeding_record(request):
    tenant = request.farm_user.tenant
    if tenant is None or not can_access_feature(request.farm_user, 'manage_breeding'):
        messages.error(request, 'You do not have permission to record breedings.')
        return redirect('breeding_dashboard')
    if request.method == 'POST':
        form = BreedingRecordForm(request.POST, tenant=tenant)
        if form.is_valid():
            record = form.save(commit=False)
            record.tenant = tenant
            record.farm = record.animal.farm
            record.recorded_by = request.farm_user
            record.save()
            messages.success(request, f'Breeding recorded for {record.animal.tag_number}. Due {record.expected_due_date}.')
            return redirect('breeding_dashboard')
    else:
        initial = {'breeding_date': date.today()}
        if request.GET.get('dam'):
            initial['animal'] = request.GET.get('dam')
        form = BreedingRecordForm(tenant=tenant, initial=initial)
    context = get_common_context(request)
    context['form'] = form
    return render(request, 'livestock/breeding_form.html', context)


@require_POST
@farm_user_required
def record_birth(request, record_id):
    record = get_object_or_404(scoped(BreedingRecord.objects.all(), request), pk=record_id)
    if not can_access_feature(request.farm_user, 'manage_breeding'):
        messages.error(request, 'You do not have permission to record births.')
        return redirect('breeding_dashboard')
    form = BirthRecordForm(request.POST)
    if not form.is_valid():
        for errors in form.errors.values():
            for error in errors:
                messages.error(request, error)
        return redirect('breeding_dashboard')

    data = form.cleaned_data
    record.actual_birth_date = data['actual_birth_date']
    record.birth_outcome = data['birth_outcome']
    record.offspring_count = data['offspring_count']
    record.complications = data['complications']
    record.pregnancy_status = 'failed' if data['birth_outcome'] in ('stillborn', 'aborted') else 'completed'
    record.save()
    messages.success(request, f'Birth recorded for {record.animal.tag_number}.')
    return redirect('breeding_dashboard')


# --- EXTERNAL FARMS ---
@farm_user_required
def external_farms(request):
    tenant = request.farm_user.tenant
    farm_form = ExternalFarmForm()
    if request.method == 'POST':
        if tenant is None or not can_access_feature(request.farm_user, 'manage_breeding'):
            messages.error(request, 'You do not have permission to add external farms.')
            return redirect('external_farms')
        farm_form = ExternalFarmForm(request.POST)
        if farm_form.is_valid():
            farm = farm_form.save(commit=False)
            farm.tenant = tenant
            farm.save()
            messages.success(request, f'{farm.farm_name} added.')
            return redirect('external_farms')

    farms = scoped(ExternalFarm.objects.all(), request).prefetch_related('animals')
    hire_agreements = scoped(HireAgreement.objects.all(), request).select_related(
        'external_farm', 'external_animal', 'animal')
    context = get_common_context(request)
    context.update({
        'external_farms': farms,
        'hire_agreements': hire_agreements,
        'farm_form': farm_form,
        'animal_form': ExternalAnimalForm(tenant=tenant),
    })
    return render(request, 'livestock/external_farms.html', context)


@require_POST
@farm_user_required
def add_external_animal(request):
    tenant = request.farm_user.tenant
    if tenant is None or not can_access_feature(request.farm_user, 'manage_breeding'):
        messages.error(request, 'You do not have permission to add external animals.')
        return redirect('external_farms')
    form = ExternalAnimalForm(request.POST, tenant=tenant)
    if form.is_valid():
        external = form.save()
        messages.success(request, f'{external.tag_number or "External animal"} added to {external.external_farm.farm_name}.')
    else:
        messages.error(request, 'Could not add the external animal. Check the form and try again.')
    return redirect('external_farms')


# --- HIRE AGREEMENTS ---
@farm_user_required
def hire_agreement_list(request):
    agreements = scoped(HireAgreement.objects.all(), request).select_related(
        'farm', 'external_farm', 'animal', 'external_animal')
    summary = finance.hire_agreement_summary(agreements)

    agreement_type = request.GET.get('type', '')
    status = request.GET.get('status', '')
    payment_status = request.GET.get('payment', '')
    if agreement_type:
        agreements = agreements.filter(agreement_type=agreement_type)
    if status:
        agreements = agreements.filter(status=status)
    if payment_status:
        agreements = agreements.filter(payment_status=payment_status)

    context = get_common_context(request)
    context.update({
        'agreements': agreements,
        'summary': summary,
        'payment_form': HirePaymentForm(initial={'payment_date': date.today()}),
        'type_choices': HireAgreement.TYPES,
        'status_choices': HireAgreement.STATUS_CHOICES,
        'payment_choices': PAYMENT_STATUSES,
        'filters': {'type': agreement_type, 'status': status, 'payment': payment_status},
    })
    return render(request, 'livestock/hire_agreements.html', context)


@farm_user_required
def add_hire_agreement(request):
    tenant = request.farm_user.tenant
    if tenant is None or not can_access_feature(request.farm_user, 'manage_hire_agreements'):
        messages.error(request, 'You do not have permission to create hire agreements.')
        return redirect('hire_agreement_list')
    if request.method == 'POST':
        form = HireAgreementForm(request.POST, tenant=tenant)
        if form.is_valid():
            agreement = form.save(commit=False)
            agreement.tenant = tenant
            agreement.created_by = request.farm_user
            agreement.save()
            logger.info("Hire agreement %s created by %s", agreement.pk, request.farm_user.email)
            messages.success(request, f'{agreement} created.')
            return redirect('hire_agreement_list')
    else:
        form = HireAgreementForm(tenant=tenant, initial={'start_date': date.today()})
    context = get_common_context(request)
    context['form'] = form
    return render(request, 'livestock/hire_agreement_form.html', context)


@require_POST
@farm_user_required
def record_hire_payment(request, agreement_id):
    agreement = get_object_or_404(scoped(HireAgreement.objects.all(), request), pk=agreement_id)
    if not can_access_feature(request.farm_user, 'record_hire_payments'):
        messages.error(request, 'You do not have permission to record hire payments.')
        return redirect('hire_agreement_list')
    form = HirePaymentForm(request.POST, agreement=agreement)
    if not form.is_valid():
        for errors in form.errors.values():
            for error in errors:
                messages.error(request, error)
        return redirect('hire_agreement_list')

    data = form.cleaned_data
    agreement.record_payment(data['amount'], data['payment_date'], data['payment_method'], data['payment_reference'])
    logger.info("Payment of %s recorded on hire agreement %s by %s", data['amount'], agreement.pk, request.farm_user.email)
    messages.success(request, f'Payment recorded. {agreement} is now {agreement.get_payment_status_display().lower()}.')
    return redirect('hire_agreement_list')


# --- ACTIVITIES ---
@farm_user_required
def activity_list(request):
    tenant = request.farm_user.tenant
    form = ActivityForm(tenant=tenant, initial={'activity_date': date.today()})
    if request.method == 'POST' and tenant is not None:
        form = ActivityForm(request.POST, tenant=tenant)
        if form.is_valid():
            activity = form.save(commit=False)
            activity.tenant = tenant
            activity.performed_by = request.farm_user
            activity.save()
            messages.success(request, 'Activity logged.')
            return redirect('activity_list')

    activities = scoped(Activity.objects.all(), request).select_related('animal', 'performed_by', 'farm')
    activity_type = request.GET.get('type', '')
    if activity_type:
        activities = activities.filter(activity_type=activity_type)
    context = get_common_context(request)
    context.update({
        'activities': activities,
        'form': form,
        'type_choices': Activity.TYPES,
        'selected_type': activity_type,
    })
    return render(request, 'livestock/activities.html', context)


# =====================================================
# FINANCE: EXPENSES & SALES
# =====================================================

def _unified_expenses(request):
    expenses = scoped(Expense.objects.all(), request)
    agreements = scoped(HireAgreement.objects.all(), request).select_related('external_farm', 'external_animal')
    return finance.aggregate_all_expenses(expenses, agreements)


@farm_user_required
def expense_list(request):
    tenant = request.farm_user.tenant
    form = ExpenseForm(tenant=tenant, initial={'expense_date': date.today()})
    if request.method == 'POST' and tenant is not None:
        form = ExpenseForm(request.POST, tenant=tenant)
        if form.is_valid():
            expense = form.save(commit=False)
            expense.tenant = tenant
            expense.created_by = request.farm_user
            expense.save()
            messages.success(request, 'Expense recorded.')
            return redirect('expense_list')

    all_rows = _unified_expenses(request)
    source = request.GET.get('source', '')
    expense_type = request.GET.get('type', '')
    rows = finance.get_expenses_by_type(finance.get_expenses_by_source(all_rows, source), expense_type)

    context = get_common_context(request)
    context.update({
        'expenses': rows,
        'totals': finance.get_total_by_source(all_rows),
        'filtered_total': finance.get_total_by_source(rows)['total'],
        'form': form,
        'source_choices': finance.EXPENSE_SOURCES,
        'type_choices': Expense.TYPES,
        'filters': {'source': source, 'type': expense_type},
    })
    return render(request, 'livestock/expenses.html', context)


@farm_user_required
def sales_list(request):
    user = request.farm_user
    animal_sales = scoped(AnimalSale.objects.all(), request).select_related('animal')
    product_sales = scoped(ProductSale.objects.all(), request)
    summary = finance.sales_summary(animal_sales, product_sales)

    rates = TaxRate.objects.filter(Q(tenant=user.tenant) | Q(tenant__isnull=True)) if user.tenant else TaxRate.objects.filter(tenant__isnull=True)
    tax_rate = finance.applicable_tax_rate(rates, 'all_revenue', date.today())
    tax = None
    if tax_rate:
        tax = finance.calculate_tax(summary['total_revenue'], tax_rate.rate_percentage, tax_rate.calculation_method)

    context = get_common_context(request)
    context.update({
        'animal_sales': animal_sales,
        'product_sales': product_sales,
        'summary': summary,
        'tax_rate': tax_rate,
        'tax': tax,
        'animal_sale_form': AnimalSaleForm(tenant=user.tenant, initial={'sale_date': date.today()}),
        'product_sale_form': ProductSaleForm(tenant=user.tenant, initial={'sale_date': date.today()}),
    })
    return render(request, 'livestock/sales.html', context)


@require_POST
@farm_user_required
def add_animal_sale(request):
    tenant = request.farm_user.tenant
    form = AnimalSaleForm(request.POST, tenant=tenant)
    if tenant is None or not form.is_valid():
        messages.error(request, 'Could not record the sale. Check the form and try again.')
        return redirect('sales_list')
    sale = form.save(commit=False)
    sale.tenant = tenant
    sale.farm = sale.animal.farm
    sale.created_by = request.farm_user
    with transaction.atomic():
        sale.save()
        sale.animal.status = 'sold'
        sale.animal.save(update_fields=['status', 'updated_at'])
    messages.success(request, f'{sale.animal.tag_number} sold.')
    return redirect('sales_list')


@require_POST
@farm_user_required
def add_product_sale(request):
    tenant = request.farm_user.tenant
    form = ProductSaleForm(request.POST, tenant=tenant)
    if tenant is None or not form.is_valid():
        messages.error(request, 'Could not record the sale. Check the form and try again.')
        return redirect('sales_list')
    sale = form.save(commit=False)
    sale.tenant = tenant
    sale.created_by = request.farm_user
    sale.save()
    messages.success(request, f'{sale.get_product_type_display()} sale recorded.')
    return redirect('sales_list')


# --- TAX RATES ---
def _visible_tax_rates(user):
    if user.is_super_admin:
        return TaxRate.objects.all()
    return TaxRate.objects.filter(Q(tenant=user.tenant) | Q(tenant__isnull=True))


def _can_edit_tax_rate(user, rate):
    if rate.tenant_id is None:
        return user.is_super_admin
    return user.is_super_admin or rate.tenant_id == user.tenant_id


@farm_user_required
def tax_rate_list(request):
    user = request.farm_user
    form = TaxRateForm(initial={'effective_from': date.today()})
    if request.method == 'POST':
        if not can_access_feature(user, 'manage_tax_rates') or (user.tenant is None and not user.is_super_admin):
            messages.error(request, 'You do not have permission to add tax rates.')
            return redirect('tax_rate_list')
        form = TaxRateForm(request.POST)
        if form.is_valid():
            rate = form.save(commit=False)
            rate.tenant = user.tenant
            rate.is_system_default = rate.tenant is None
            rate.save()
            logger.info("Tax rate %s added by %s", rate.tax_code, user.email)
            messages.success(request, f'{rate} added.')
            return redirect('tax_rate_list')

    rates = _visible_tax_rates(user).select_related('tenant')
    context = get_common_context(request)
    context.update({
        'rates': [(rate, _can_edit_tax_rate(user, rate)) for rate in rates],
        'current_rate': finance.applicable_tax_rate(rates, 'all_revenue', date.today()),
        'form': form,
    })
    return render(request, 'livestock/tax_rates.html', context)


@farm_user_required
def edit_tax_rate(request, rate_id):
    user = request.farm_user
    rate = get_object_or_404(_visible_tax_rates(user), pk=rate_id)
    if not can_access_feature(user, 'manage_tax_rates') or not _can_edit_tax_rate(user, rate):
        messages.error(request, 'System tax rates can only be changed by a super admin.'
                       if rate.tenant_id is None else 'You do not have permission to edit tax rates.')
        return redirect('tax_rate_list')
    if request.method == 'POST':
        form = TaxRateForm(request.POST, instance=rate)
        if form.is_valid():
            form.save()
            messages.success(request, f'{rate} updated.')
            return redirect('tax_rate_list')
    else:
        form = TaxRateForm(instance=rate)
    context = get_common_context(request)
    context.update({'form': form, 'rate': rate})
    return render(request, 'livestock/tax_rate_form.html', context)


# --- INVENTORY ---
@farm_user_required
def inventory_list(request):
    items = scoped(InventoryItem.objects.all(), request).select_related('farm')
    category = request.GET.get('category', '')
    if category:
        items = items.filter(category=category)
    context = get_common_context(request)
    context.update({
        'items': items,
        'total_value': sum((item.total_value for item in items), 0),
        'low_stock_count': sum(1 for item in items if item.is_low),
        'category_choices': InventoryItem.CATEGORIES,
        'selected_category': category,
        'movement_form': InventoryMovementForm(),
    })
    return render(request, 'livestock/inventory.html', context)


@require_POST
@farm_user_required
def record_inventory_movement(request, item_id):
    item = get_object_or_404(scoped(InventoryItem.objects.all(), request), pk=item_id)
    form = InventoryMovementForm(request.POST)
    if not form.is_valid():
        messages.error(request, 'Invalid stock movement.')
        return redirect('inventory_list')
    _, item = InventoryMovement.record(item, created_by=request.farm_user, **form.cleaned_data)
    messages.success(request, f'{item.item_name}: stock now {item.current_stock} {item.unit}.')
    return redirect('inventory_list')


# =====================================================
# TEAM: USERS, ROLES, PERMISSIONS, DELEGATIONS
# =====================================================

@farm_user_required
def user_list(request):
    users = scoped(FarmUser.objects.all(), request).select_related('tenant').prefetch_related('roles')
    rows = []
    for member in users:
        role = primary_role(member)
        rows.append({'user': member, 'role': ROLE_DISPLAY_NAMES.get(role, role)})

    tenant = request.farm_user.tenant
    plan = tenant.plan if tenant else None
    context = get_common_context(request)
    context.update({
        'user_rows': rows,
        'plan': plan,
        'can_invite': plan.allows(plan.max_users, len(rows)) if plan else True,
    })
    return render(request, 'livestock/users.html', context)


@farm_user_required
def role_list(request):
    tenant = request.farm_user.tenant
    form = RoleForm()
    if request.method == 'POST' and tenant is not None:
        form = RoleForm(request.POST)
        if form.is_valid():
            role = form.save(commit=False)
            role.tenant = tenant
            role.save()
            form.save_m2m()
            if role.template and not role.permissions.exists():
                role.permissions.set(role.template.permissions.all())
            messages.success(request, f'Role "{role.name}" created.')
            return redirect('role_list')

    roles = Role.objects.filter(Q(tenant=tenant) | Q(tenant__isnull=True)).prefetch_related('permissions')
    roles = roles.annotate(member_count=Count('users'))
    context = get_common_context(request)
    context.update({'roles': roles, 'form': form})
    return render(request, 'livestock/roles.html', context)


@farm_user_required
def permission_library(request):
    grouped = OrderedDict()
    for permission in Permission.objects.all():
        grouped.setdefault(permission.get_category_display(), []).append(permission)
    context = get_common_context(request)
    context['grouped_permissions'] = grouped
    return render(request, 'livestock/permissions.html', context)


@farm_user_required
def role_templates(request):
    context = get_common_context(request)
    context['templates'] = RoleTemplate.objects.prefetch_related('permissions')
    return render(request, 'livestock/role_templates.html', context)


@farm_user_required
def delegation_list(request):
    delegations = scoped(Delegation.objects.all(), request).select_related(
        'delegator', 'delegate', 'delegated_role').prefetch_related('delegated_permissions')
    status = request.GET.get('status', '')
    if status:
        delegations = [d for d in delegations if d.display_status == status]
    context = get_common_context(request)
    context.update({
        'delegations': delegations,
        'status_choices': Delegation.STATUS_CHOICES,
        'selected_status': status,
    })
    return render(request, 'livestock/delegations.html', context)


@farm_user_required
def add_delegation(request):
    user = request.farm_user
    if user.tenant is None:
        messages.error(request, 'Delegations belong to a tenant.')
        return redirect('delegation_list')
    if request.method == 'POST':
        form = DelegationForm(request.POST, tenant=user.tenant, delegator=user)
        if form.is_valid():
            delegation = form.save(commit=False)
            delegation.tenant = user.tenant
            delegation.delegator = user
            delegation.save()
            form.save_m2m()
            logger.info("Delegation %s created: %s -> %s", delegation.pk, user.email, delegation.delegate.email)
            messages.success(request, f'Access delegated to {delegation.delegate.full_name}.')
            return redirect('delegation_list')
    else:
        now = timezone.now()
        form = DelegationForm(tenant=user.tenant, delegator=user, initial={'start_date': now})
    context = get_common_context(request)
    context['form'] = form
    return render(request, 'livestock/delegation_form.html', context)


@require_POST
@farm_user_required
def revoke_delegation(request, delegation_id):
    delegation = get_object_or_404(scoped(Delegation.objects.all(), request), pk=delegation_id)
    if delegation.status != 'active':
        messages.error(request, 'Only active delegations can be revoked.')
        return redirect('delegation_list')
    delegation.revoke()
    logger.info("Delegation %s revoked by %s", delegation.pk, request.farm_user.email)
    messages.success(request, 'Delegation revoked.')
    return redirect('delegation_list')


# --- AUDIT LOGS ---
@farm_user_required
def audit_logs(request):
    logs = scoped(AuditLog.objects.all(), request).select_related('user', 'tenant', 'farm', 'delegation')
    action = request.GET.get('action', '')
    entity_type = request.GET.get('entity_type', '')
    user_id = request.GET.get('user', '')
    if action:
        logs = logs.filter(action=action)
    if entity_type:
        logs = logs.filter(entity_type=entity_type)
    if user_id.isdigit():
        logs = logs.filter(user_id=int(user_id))

    base = scoped(AuditLog.objects.all(), request)
    context = get_common_context(request)
    context.update({
        'logs': logs,
        'actions': base.order_by('action').values_list('action', flat=True).distinct(),
        'entity_types': base.order_by('entity_type').values_list('entity_type', flat=True).distinct(),
        'log_users': scoped(FarmUser.objects.all(), request),
        'filters': {'action': action, 'entity_type': entity_type, 'user': user_id},
    })
    return render(request, 'livestock/audit_logs.html', context)


# =====================================================
# SUPER ADMIN
# =====================================================

@farm_user_required
def admin_overview(request):
    subscriptions = TenantSubscription.objects.select_related('plan')
    active = [s for s in subscriptions if s.is_active]
    context = get_common_context(request)
    context.update({
        'tenant_count': Tenant.objects.count(),
        'user_count': FarmUser.objects.count(),
        'animal_count': Animal.objects.count(),
        'active_subscriptions': len(active),
        'overdue_subscriptions': sum(1 for s in subscriptions if s.payment_status == 'overdue'),
        'monthly_revenue': sum((s.plan.price for s in active), 0),
        'recent_logs': AuditLog.objects.select_related('user', 'tenant')[:10],
    })
    return render(request, 'livestock/admin_overview.html', context)


@farm_user_required
def admin_tenants(request):
    tenants = Tenant.objects.select_related('owner', 'plan', 'subscription').annotate(
        num_users=Count('users', distinct=True),
        num_farms=Count('farms', distinct=True),
        num_animals=Count('animals', distinct=True),
    ).order_by('organization_name')
    context = get_common_context(request)
    context['tenants'] = tenants
    return render(request, 'livestock/admin_tenants.html', context)


@farm_user_required
def admin_subscriptions(request):
    subscriptions = TenantSubscription.objects.select_related('tenant', 'plan').order_by('tenant__organization_name')
    context = get_common_context(request)
    context.update({
        'subscriptions': subscriptions,
        'revenue_by_plan': subscriptions.filter(status='active').order_by().values('plan__name').annotate(total=Sum('plan__price')),
    })
    return render(request, 'livestock/admin_subscriptions.html', context)


@require_POST
@farm_user_required
def toggle_subscription(request, subscription_id):
    subscription = get_object_or_404(TenantSubscription.objects.select_related('tenant'), pk=subscription_id)
    if subscription.status not in ('active', 'suspended'):
        messages.error(request, f'{subscription.tenant} has a {subscription.get_status_display().lower()} subscription and cannot be toggled.')
        return redirect('admin_subscriptions')
    subscription.status = 'suspended' if subscription.status == 'active' else 'active'
    subscription.save(update_fields=['status'])
    logger.info("Subscription for %s set to %s by %s", subscription.tenant, subscription.status, request.farm_user.email)
    messages.success(request, f'{subscription.tenant} is now {subscription.get_status_display().lower()}.')
    return redirect('admin_subscriptions')


# --- CSV EXPORTS ---
@farm_user_required
def export_animals_csv(request):
    response = HttpResponse(content_type='text/csv')
    response['Content-Disposition'] = 'attachment; filename="animals_export.csv"'
    writer = csv.writer(response)
    writer.writerow(['Tag', 'Type', 'Breed', 'Gender', 'Birth Date', 'Age', 'Status', 'Health', 'Dam', 'Sire', 'Farm'])
    for animal in scoped(Animal.objects.select_related('mother', 'father', 'farm'), request):
        writer.writerow([
            animal.tag_number, animal.get_animal_type_display(), animal.breed,
            animal.gender_label, animal.birth_date or '', animal.display_age,
            animal.status, animal.health_status,
            animal.mother.tag_number if animal.mother else '',
            animal.father.tag_number if animal.father else '',
            animal.farm.farm_name,
        ])
    return response


@farm_user_required
def export_expenses_csv(request):
    response = HttpResponse(content_type='text/csv')
    response['Content-Disposition'] = 'attachment; filename="expenses_export.csv"'
    writer = csv.writer(response)
    writer.writerow(['Date', 'Source', 'Type', 'Description', 'Vendor', 'Amount', 'Reference'])
    for row in _unified_expenses(request):
        writer.writerow([
            row['expense_date'], row['source'], row['expense_type'], row['description'],
            row['vendor'], row['amount'], row['source_reference'],
        ])
    return response


@farm_user_required
def export_sales_csv(request):
    response = HttpResponse(content_type='text/csv')
    response['Content-Disposition'] = 'attachment; filename="sales_export.csv"'
    writer = csv.writer(response)
    writer.writerow(['Date', 'Kind', 'Item', 'Customer', 'Amount', 'Payment Status'])
    for sale in scoped(AnimalSale.objects.select_related('animal'), request):
        writer.writerow([sale.sale_date, 'animal', sale.animal.tag_number, sale.customer_name,
                         sale.sale_price, sale.payment_status])
    for sale in scoped(ProductSale.objects.all(), request):
        writer.writerow([sale.sale_date, 'product', f'{sale.quantity} {sale.unit} {sale.product_type}',
                         sale.customer_name, sale.total_amount, sale.payment_status])
    return response
