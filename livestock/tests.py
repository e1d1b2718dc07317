from django.test import TestCase, SimpleTestCase, Client, override_settings
from django.urls import reverse
from django.utils import timezone
from django.core.management import call_command
from django.core.management.base import CommandError
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from unittest import mock
from django.db import DatabaseError
from .models import (
    Permission, Role, SubscriptionPlan, Tenant, TenantSubscription, FarmUser, Farm, Delegation,
    Animal, ExternalFarm, ExternalAnimal, BreedingRecord, HireAgreement, Activity,
    Expense, AnimalSale, ProductSale, InventoryItem, InventoryMovement, TaxRate
)
from . import analytics, finance, pedigree
from .demo import load_demo_data
from .forms import ActivityForm, AnimalForm
from .middleware import SESSION_KEY
from .permissions import (
    effective_permissions, has_permission, has_all_permissions, get_required_permissions,
    is_public_path, primary_role, can_delete_animals, can_access_feature
)


def make_animal(pk, tag, gender='female', animal_type='cattle', **extra):
    return Animal(id=pk, tag_number=tag, gender=gender, animal_type=animal_type, **extra)


def make_herd():
    """Two founders and a bull, their offspring, and an inbred pair of siblings."""
    return [
        make_animal(1, 'COW-001', breeding_value=78, traits=[{'trait_name': 'High milk yield'}]),
        make_animal(2, 'COW-002'),
        make_animal(3, 'BULL-001', 'male', breeding_value=88, parentage_verified=True,
                    traits=[{'trait_name': 'High milk yield'}, {'trait_name': 'Strong frame'}]),
        make_animal(4, 'COW-003', mother_id=1, father_id=3),
        make_animal(5, 'BULL-002', 'male', mother_id=2, father_id=3, breeding_value=65),
        make_animal(6, 'COW-004', mother_id=4, father_id=5),
        make_animal(7, 'BULL-003', 'male', mother_id=4, father_id=5),
        make_animal(8, 'STR-001', 'male', is_castrated=True),
    ]


def make_records():
    return [
        SimpleNamespace(animal_id=1, sire_id=3, offspring_ids=[4]),
        SimpleNamespace(animal_id=2, sire_id=3, offspring_ids=[5]),
        SimpleNamespace(animal_id=4, sire_id=5, offspring_ids=[6, 7]),
    ]


# =====================
# PEDIGREE (no database)
# =====================

class GenderLabelTest(SimpleTestCase):
    def test_species_labels(self):
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A')), 'Cow')
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A', 'male')), 'Bull')
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A', 'male', is_castrated=True)), 'Steer')
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A', 'male', 'goat', is_castrated=True)), 'Wether')
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A', 'female', 'goat')), 'Doe')

    def test_fallback_labels(self):
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A', 'female', 'chicken')), 'Female')
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A', 'male', 'chicken')), 'Male')
        self.assertEqual(pedigree.gender_label(make_animal(1, 'A', 'male', 'duck', is_castrated=True)), 'Castrated Male')

    def test_can_breed(self):
        self.assertTrue(pedigree.can_breed(make_animal(1, 'A')))
        self.assertTrue(pedigree.can_breed(make_animal(1, 'A', 'male')))
        self.assertFalse(pedigree.can_breed(make_animal(1, 'A', 'male', is_castrated=True)))

    def test_model_properties_delegate(self):
        steer = make_animal(1, 'STR-001', 'male', is_castrated=True)
        self.assertEqual(steer.gender_label, 'Steer')
        self.assertFalse(steer.can_breed)


class GenerationNumberTest(SimpleTestCase):
    def setUp(self):
        self.herd = make_herd()

    def test_animals_without_parents_are_generation_one(self):
        for animal in self.herd:
            if not animal.mother_id and not animal.father_id:
                self.assertEqual(pedigree.calculate_generation_number(animal.pk, self.herd), 1)

    def test_uses_deepest_parent_line(self):
        self.assertEqual(pedigree.calculate_generation_number(4, self.herd), 2)
        self.assertEqual(pedigree.calculate_generation_number(6, self.herd), 3)

    def test_stored_generation_wins(self):
        herd = self.herd + [
            make_animal(10, 'IMP-001', mother_id=6, generation_number=7),
            make_animal(11, 'IMP-002', mother_id=10),
        ]
        self.assertEqual(pedigree.calculate_generation_number(10, herd), 7)
        self.assertEqual(pedigree.calculate_generation_number(11, herd), 8)

    def test_unknown_animal(self):
        self.assertEqual(pedigree.calculate_generation_number(999, self.herd), 0)

    def test_parent_cycle_raises(self):
        herd = [make_animal(20, 'X', mother_id=21), make_animal(21, 'Y', mother_id=20)]
        with self.assertRaises(pedigree.PedigreeCycleError):
            pedigree.calculate_generation_number(20, herd)


class AncestorTest(SimpleTestCase):
    def setUp(self):
        self.herd = make_herd()
        self.farm = ExternalFarm(id=9, farm_name='Green Valley Goats')
        self.buck = ExternalAnimal(id=50, external_farm=self.farm, tag_number='Buck-456',
                                   animal_type='goat', gender='male', age_years=3)

    def test_zero_generations_has_no_parents(self):
        for animal in self.herd:
            node = pedigree.get_ancestors(animal.pk, 0, self.herd)
            self.assertNotIn('mother', node)
            self.assertNotIn('father', node)

    def test_tree_is_bounded_by_generations(self):
        node = pedigree.get_ancestors(6, 2, self.herd)
        self.assertEqual(node['tag_number'], 'COW-004')
        self.assertEqual(node['generation'], 0)
        self.assertEqual(node['mother']['tag_number'], 'COW-003')
        self.assertEqual(node['father']['tag_number'], 'BULL-002')
        grandmother = node['mother']['mother']
        self.assertEqual(grandmother['tag_number'], 'COW-001')
        self.assertEqual(grandmother['generation'], 2)
        self.assertNotIn('mother', grandmother)

    def test_missing_parent_is_omitted(self):
        node = pedigree.get_ancestors(1, 3, self.herd)
        self.assertNotIn('mother', node)

    def test_external_parent_is_a_leaf(self):
        doe = make_animal(30, 'GOAT-001', 'female', 'goat', external_father_id=50)
        node = pedigree.get_ancestors(30, 3, [doe], [self.buck])
        father = node['father']
        self.assertEqual(father['animal_type'], 'external')
        self.assertEqual(father['tag_number'], 'Buck-456')
        self.assertEqual(father['farm_name'], 'Green Valley Goats')
        self.assertEqual(father['generation'], 1)
        self.assertEqual(father['birth_date'], date.today() - timedelta(days=3 * 365))
        self.assertNotIn('mother', node)

    def test_external_defaults(self):
        unnamed = ExternalAnimal(id=51, external_farm=self.farm, animal_type='goat')
        doe = make_animal(30, 'GOAT-001', 'female', 'goat', external_mother_id=51)
        node = pedigree.get_ancestors(30, 1, [doe], [unnamed])
        self.assertEqual(node['mother']['tag_number'], 'Unknown')
        self.assertEqual(node['mother']['gender'], 'female')
        self.assertIsNone(node['mother']['birth_date'])

    def test_unknown_animal(self):
        self.assertIsNone(pedigree.get_ancestors(999, 3, self.herd))


class DescendantTest(SimpleTestCase):
    def setUp(self):
        self.herd = make_herd()
        self.records = make_records()

    def test_discovery_order(self):
        descendants = pedigree.get_descendants(3, self.herd, self.records)
        self.assertEqual([a.tag_number for a in descendants], ['COW-003', 'COW-004', 'BULL-003', 'BULL-002'])

    def test_dam_line(self):
        descendants = pedigree.get_descendants(1, self.herd, self.records)
        self.assertEqual([a.pk for a in descendants], [4, 6, 7])

    def test_no_offspring(self):
        self.assertEqual(pedigree.get_descendants(8, self.herd, self.records), [])

    def test_offspring_missing_from_herd_is_skipped(self):
        records = [SimpleNamespace(animal_id=2, sire_id=None, offspring_ids=[99, 5])]
        self.assertEqual([a.pk for a in pedigree.get_descendants(2, self.herd, records)], [5])

    def test_parentage_descendants(self):
        self.assertEqual([a.pk for a in pedigree.find_parentage_descendants(3, self.herd)], [4, 5, 6, 7])
        self.assertEqual([a.pk for a in pedigree.find_parentage_descendants(2, self.herd)], [5, 6, 7])
        self.assertEqual(pedigree.find_parentage_descendants(8, self.herd), [])


class InbreedingTest(SimpleTestCase):
    def setUp(self):
        self.herd = make_herd()

    def test_common_ancestor_of_half_siblings_offspring(self):
        common = pedigree.find_common_ancestors(6, self.herd)
        self.assertEqual([a.tag_number for a in common], ['BULL-001'])
        self.assertEqual(pedigree.calculate_inbreeding_coefficient(6, self.herd), 0.125)

    def test_zero_without_common_ancestors(self):
        for animal in self.herd:
            if not pedigree.find_common_ancestors(animal.pk, self.herd):
                self.assertEqual(pedigree.calculate_inbreeding_coefficient(animal.pk, self.herd), 0)

    def test_zero_with_one_parent_missing(self):
        herd = self.herd + [make_animal(12, 'HALF', mother_id=6)]
        self.assertEqual(pedigree.calculate_inbreeding_coefficient(12, herd), 0)

    def test_same_dam_and_sire(self):
        herd = self.herd + [make_animal(40, 'ODD', mother_id=3, father_id=3)]
        self.assertEqual(pedigree.calculate_inbreeding_coefficient(40, herd), 1.0)

    def test_unknown_animal(self):
        self.assertEqual(pedigree.calculate_inbreeding_coefficient(999, self.herd), 0)
        self.assertEqual(pedigree.find_common_ancestors(999, self.herd), [])


class PedigreeReportTest(SimpleTestCase):
    def setUp(self):
        self.herd = make_herd()

    def test_report(self):
        report = pedigree.build_pedigree_data(6, 3, self.herd)
        self.assertEqual(report['subject_animal'].tag_number, 'COW-004')
        self.assertEqual([n['tag_number'] for n in report['maternal_line']], ['COW-003', 'COW-001', 'BULL-001'])
        self.assertEqual([n['tag_number'] for n in report['paternal_line']], ['BULL-002', 'COW-002', 'BULL-001'])
        self.assertEqual(report['total_ancestors_tracked'], 6)
        self.assertEqual(report['missing_ancestors'], 8)
        self.assertAlmostEqual(report['completeness_percentage'], 6 / 14 * 100)
        self.assertAlmostEqual(report['genetic_diversity_score'], 71.5)
        self.assertEqual(report['lineage']['animal_id'], 6)

    def test_zero_generations(self):
        report = pedigree.build_pedigree_data(1, 0, self.herd)
        self.assertEqual(report['completeness_percentage'], 0)
        self.assertEqual(report['missing_ancestors'], 0)

    def test_unknown_animal_raises(self):
        with self.assertRaises(pedigree.AnimalNotFound):
            pedigree.build_pedigree_data(999, 3, self.herd)

    def test_genetic_diversity(self):
        analysis = pedigree.analyze_genetic_diversity(6, self.herd)
        self.assertEqual(analysis['score'], 30)
        self.assertEqual(len(analysis['factors']), 2)
        self.assertIn("prioritize outcrossing", analysis['recommendations'][-1])


class MatingTest(SimpleTestCase):
    def setUp(self):
        self.herd = make_herd()

    def test_predicted_traits(self):
        predictions = pedigree.predict_offspring_traits(self.herd[0], self.herd[2])
        self.assertEqual(predictions, [
            {'trait': 'High milk yield', 'probability': 0.85, 'inherited_from': 'both'},
            {'trait': 'Strong frame', 'probability': 0.50, 'inherited_from': 'father'},
        ])

    def test_optimal_mates(self):
        mates = pedigree.find_optimal_mates(6, self.herd)
        self.assertEqual([m['animal'].pk for m in mates], [3, 5, 7])
        sibling = mates[-1]
        self.assertEqual(sibling['compatibility_score'], 80)
        self.assertEqual(sibling['expected_inbreeding'], 0.125)
        self.assertIn("1 shared ancestor(s) - inbreeding risk", sibling['reasons'])
        self.assertEqual(mates[0]['compatibility_score'], 100)

    def test_castrated_males_are_not_mates(self):
        mates = pedigree.find_optimal_mates(1, self.herd)
        self.assertNotIn(8, [m['animal'].pk for m in mates])
        self.assertEqual(pedigree.find_optimal_mates(8, self.herd), [])

    def test_inbreeding_risk_of_siblings(self):
        risk = pedigree.assess_inbreeding_risk(6, 7, self.herd)
        self.assertEqual(risk['risk_level'], 'high')
        self.assertEqual(risk['inbreeding_coefficient'], 0.125)
        self.assertEqual([a.pk for a in risk['common_ancestors']], [3])

    def test_inbreeding_risk_unknown_animal(self):
        risk = pedigree.assess_inbreeding_risk(6, 999, self.herd)
        self.assertEqual(risk['risk_level'], 'low')
        self.assertIn("Cannot assess", risk['recommendation'])


# =====================
# FINANCE
# =====================

class FinanceTest(SimpleTestCase):
    def setUp(self):
        self.expenses = [
            Expense(id=1, expense_type='feed', description='Animal feed purchase',
                    amount=Decimal('150000'), expense_date=date(2024, 1, 15)),
            Expense(id=2, expense_type='medicine', description='Vaccination supplies',
                    amount=Decimal('75000'), expense_date=date(2024, 1, 18)),
            Expense(id=3, expense_type='other', description='Vet call-out',
                    amount=Decimal('20000'), expense_date=date(2024, 1, 10)),
        ]
        farm = ExternalFarm(id=1, farm_name='ABC Cattle Farm')
        bull = ExternalAnimal(id=1, external_farm=farm, tag_number='Bull-123', animal_type='cattle')
        self.agreements = [
            HireAgreement(id=1, agreement_type='hire_in', external_farm=farm, external_animal=bull,
                          start_date=date(2024, 1, 15), end_date=date(2024, 2, 15),
                          hire_fee=Decimal('200000'), paid_amount=Decimal('200000'),
                          payment_date=date(2024, 1, 17), payment_reference='MM-2024-0117'),
            HireAgreement(id=2, agreement_type='hire_out', external_farm=farm,
                          start_date=date(2024, 1, 1), end_date=date(2024, 2, 1),
                          hire_fee=Decimal('150000'), paid_amount=Decimal('150000')),
            HireAgreement(id=3, agreement_type='hire_in', external_farm=farm,
                          start_date=date(2024, 1, 1), end_date=date(2024, 2, 1),
                          hire_fee=Decimal('90000')),
        ]

    def test_unified_expenses(self):
        rows = finance.aggregate_all_expenses(self.expenses, self.agreements)
        self.assertEqual([r['id'] for r in rows], [2, 10001, 1, 3])
        hire = rows[1]
        self.assertEqual(hire['source'], 'animal_hire')
        self.assertEqual(hire['description'], 'Animal hire: Bull-123 from ABC Cattle Farm')
        self.assertEqual(hire['receipt_url'], 'Reference: MM-2024-0117')
        self.assertEqual(hire['source_reference'], 'Hire Agreement #1')

    def test_medical_sources(self):
        rows = finance.aggregate_all_expenses(self.expenses)
        sources = {r['id']: r['source'] for r in rows}
        self.assertEqual(sources, {1: 'manual', 2: 'medical', 3: 'medical'})

    def test_filters_and_totals(self):
        rows = finance.aggregate_all_expenses(self.expenses, self.agreements)
        self.assertEqual(finance.get_expenses_by_source(rows, None), rows)
        self.assertEqual(len(finance.get_expenses_by_source(rows, 'medical')), 2)
        self.assertEqual(len(finance.get_expenses_by_type(rows, 'animal_hire')), 1)
        totals = finance.get_total_by_source(rows)
        self.assertEqual(totals['total'], Decimal('445000'))
        self.assertEqual(totals['animal_hire'], Decimal('200000'))
        self.assertEqual(totals['manual'], Decimal('150000'))

    def test_exclusive_tax(self):
        result = finance.calculate_tax(Decimal('100'), Decimal('18'))
        self.assertEqual(result['tax_amount'], Decimal('18.00'))
        self.assertEqual(result['total_amount'], Decimal('118.00'))

    def test_inclusive_tax(self):
        result = finance.calculate_tax(Decimal('118'), 18, 'inclusive')
        self.assertEqual(result['tax_amount'], Decimal('18.00'))
        self.assertEqual(result['revenue_amount'], Decimal('100.00'))
        self.assertEqual(result['total_amount'], Decimal('118.00'))

    def test_unknown_tax_method(self):
        with self.assertRaises(ValueError):
            finance.calculate_tax(100, 18, 'compound')

    def test_tenant_rate_wins(self):
        system = TaxRate(tax_code='VAT-UG-18', rate_percentage=Decimal('18'), effective_from=date(2024, 1, 1))
        tenant_rate = TaxRate(tenant_id=1, tax_code='VAT-T-18', rate_percentage=Decimal('18'), effective_from=date(2024, 1, 1))
        expired = TaxRate(tenant_id=1, tax_code='OLD', rate_percentage=Decimal('16'),
                          effective_from=date(2020, 1, 1), effective_to=date(2023, 12, 31))
        rate = finance.applicable_tax_rate([system, expired, tenant_rate], 'animal_sales', date(2024, 6, 1))
        self.assertEqual(rate.tax_code, 'VAT-T-18')
        self.assertIsNone(finance.applicable_tax_rate([expired], 'animal_sales', date(2024, 6, 1)))

    def test_hire_agreement_summary(self):
        self.agreements[2].status = 'active'
        summary = finance.hire_agreement_summary(self.agreements)
        self.assertEqual(summary['income_received'], Decimal('150000'))
        self.assertEqual(summary['expenses_paid'], Decimal('200000'))
        self.assertEqual(summary['pending_income'], Decimal('0.00'))
        self.assertEqual(summary['pending_expenses'], Decimal('90000'))
        self.assertEqual(summary['active_count'], 3)
        self.assertEqual(summary['expiring_soon'], 0)

    def test_cancelled_agreement_is_not_pending(self):
        self.agreements[2].status = 'cancelled'
        summary = finance.hire_agreement_summary(self.agreements)
        self.assertEqual(summary['pending_expenses'], Decimal('0.00'))
        self.assertEqual(summary['active_count'], 2)


def make_breeding(sire_source='internal', outcome='', status='confirmed', born=None, offspring=None,
                  animal_type='cattle', agreement=None, complications=''):
    return SimpleNamespace(sire_source=sire_source, birth_outcome=outcome, pregnancy_status=status,
                           actual_birth_date=born, offspring_count=offspring, complications=complications,
                           hire_agreement=agreement, animal=SimpleNamespace(animal_type=animal_type))


class AnalyticsTest(SimpleTestCase):
    def setUp(self):
        hired_out = SimpleNamespace(pk=1, payment_status='paid', hire_fee=Decimal('100000'), paid_amount=Decimal('100000'))
        hired_in = SimpleNamespace(pk=2, payment_status='partial', hire_fee=Decimal('200000'), paid_amount=Decimal('50000'))
        self.records = [
            make_breeding(outcome='successful', status='completed', born=date(2024, 1, 10), offspring=2),
            make_breeding(outcome='successful', status='completed', born=date(2024, 6, 5), animal_type='goat',
                          agreement=hired_out),
            make_breeding(),
            make_breeding('external', 'complications', 'completed', date(2023, 12, 1), 1, agreement=hired_in,
                          complications='Difficult delivery'),
            make_breeding('external', 'stillborn', 'failed', agreement=hired_in),
        ]

    def test_seasons(self):
        self.assertEqual(analytics.season_of(date(2024, 11, 1)), 'dry')
        self.assertEqual(analytics.season_of(date(2024, 4, 30)), 'dry')
        self.assertEqual(analytics.season_of(date(2024, 5, 1)), 'wet')

    def test_internal_sires(self):
        internal = analytics.sire_source_stats(self.records)['internal']
        self.assertEqual(internal['total'], 3)
        self.assertEqual(internal['successful'], 2)
        self.assertEqual(internal['success_rate'], 66.7)
        self.assertEqual(internal['deliveries'], 2)
        self.assertEqual(internal['avg_offspring'], 1.5)
        self.assertEqual(internal['complications'], 0)
        self.assertEqual(internal['revenue'], Decimal('100000'))

    def test_external_sires_count_each_agreement_once(self):
        stats = analytics.sire_source_stats(self.records)
        external = stats['external']
        self.assertEqual(external['total'], 2)
        self.assertEqual(external['successful'], 0)
        self.assertEqual(external['deliveries'], 1)
        self.assertEqual(external['complications_rate'], 50.0)
        self.assertEqual(external['expenses'], Decimal('50000'))
        self.assertEqual(external['cost_per_birth'], Decimal('50000.00'))
        self.assertEqual(stats['financial']['net_profit'], Decimal('50000'))

    def test_no_records(self):
        stats = analytics.sire_source_stats([])
        self.assertEqual(stats['internal']['success_rate'], 0.0)
        self.assertEqual(stats['external']['cost_per_birth'], Decimal('0.00'))
        births = analytics.birth_rate_stats([])
        self.assertEqual(births['total_births'], 0)
        self.assertEqual(births['average_per_month'], 0.0)

    def test_birth_rates(self):
        births = analytics.birth_rate_stats(self.records)
        self.assertEqual(births['total_births'], 3)
        self.assertEqual(births['average_per_month'], 1.5)
        self.assertEqual([m['label'] for m in births['monthly']], ['Jan 2024', 'Jun 2024'])
        self.assertEqual(births['top_months'][0]['label'], 'Jan 2024')
        self.assertEqual(births['by_type'], {'cattle': 2, 'goat': 1})
        self.assertEqual(births['by_season'], {'dry': 2, 'wet': 1})
        self.assertEqual(births['available_years'], [2024, 2023])

    def test_birth_rate_filters(self):
        self.assertEqual(analytics.birth_rate_stats(self.records, animal_type='goat')['total_births'], 1)
        self.assertEqual(analytics.birth_rate_stats(self.records, season='dry')['total_births'], 2)
        self.assertEqual(analytics.birth_rate_stats(self.records, year='2023')['total_births'], 0)


# =====================
# MODEL TESTS
# =====================

class HerdTestBase(TestCase):
    """A single tenant with a farm and an owner."""
    def setUp(self):
        self.plan = SubscriptionPlan.objects.create(name='Basic', price=Decimal('50000'), max_animals=3)
        self.tenant = Tenant.objects.create(organization_name='Test Farm Co.', plan=self.plan)
        self.owner = FarmUser.objects.create(email='owner@test.com', first_name='Test', last_name='Owner', tenant=self.tenant)
        self.tenant.owner = self.owner
        self.tenant.save()
        self.farm = Farm.objects.create(tenant=self.tenant, farm_name='Home Farm')

    def animal(self, tag, gender='female', animal_type='cattle', **extra):
        return Animal.objects.create(tenant=self.tenant, farm=self.farm, tag_number=tag,
                                     gender=gender, animal_type=animal_type, **extra)


class AnimalModelTest(HerdTestBase):
    def test_str(self):
        self.assertEqual(str(self.animal('COW-001')), "COW-001 (Cattle)")

    def test_display_age(self):
        self.assertIn("Year", self.animal('COW-001', birth_date=date(2020, 3, 15)).display_age)
        self.assertEqual(self.animal('CALF', birth_date=date.today() - timedelta(days=3)).display_age, "3 Days")
        self.assertEqual(self.animal('NEW').display_age, "Unknown")

    def test_owner_flag(self):
        self.assertTrue(self.owner.is_owner)
        worker = FarmUser.objects.create(email='w@test.com', first_name='W', last_name='K', tenant=self.tenant)
        self.assertFalse(worker.is_owner)


class BreedingRecordModelTest(HerdTestBase):
    def test_due_date_from_conception(self):
        cow = self.animal('COW-001')
        record = BreedingRecord.objects.create(tenant=self.tenant, farm=self.farm, animal=cow,
                                               breeding_date=date(2024, 1, 1), conception_date=date(2024, 1, 5))
        self.assertEqual(record.expected_due_date, date(2024, 1, 5) + timedelta(days=280))

    def test_due_date_uses_species_gestation(self):
        doe = self.animal('GOAT-001', animal_type='goat')
        record = BreedingRecord.objects.create(tenant=self.tenant, farm=self.farm, animal=doe,
                                               breeding_date=date(2024, 1, 1))
        self.assertEqual(record.expected_due_date, date(2024, 1, 1) + timedelta(days=150))

    def test_manual_due_date_preserved(self):
        cow = self.animal('COW-001')
        record = BreedingRecord.objects.create(tenant=self.tenant, farm=self.farm, animal=cow,
                                               breeding_date=date(2024, 1, 1), expected_due_date=date(2024, 9, 1))
        self.assertEqual(record.expected_due_date, date(2024, 9, 1))

    def test_due_soon(self):
        cow = self.animal('COW-001')
        record = BreedingRecord.objects.create(tenant=self.tenant, farm=self.farm, animal=cow,
                                               breeding_date=date.today() - timedelta(days=270))
        self.assertTrue(record.is_due_soon)
        record.pregnancy_status = 'completed'
        self.assertFalse(record.is_due_soon)

    def test_offspring_ids(self):
        cow = self.animal('COW-001')
        calf = self.animal('CALF-001')
        self.assertEqual(BreedingRecord(animal=cow, breeding_date=date.today()).offspring_ids, [])
        record = BreedingRecord.objects.create(tenant=self.tenant, farm=self.farm, animal=cow, breeding_date=date(2024, 1, 1))
        record.offspring.add(calf)
        self.assertEqual(record.offspring_ids, [calf.pk])


class InventoryModelTest(HerdTestBase):
    def setUp(self):
        super().setUp()
        self.item = InventoryItem.objects.create(tenant=self.tenant, farm=self.farm, item_name='Hay',
                                                 current_stock=Decimal('100'), reorder_point=Decimal('20'),
                                                 unit_cost=Decimal('1500'))

    def move(self, movement_type, quantity):
        return InventoryMovement.objects.create(item=self.item, movement_type=movement_type,
                                                quantity=Decimal(quantity)).apply()

    def test_total_value(self):
        self.assertEqual(self.item.total_value, Decimal('150000'))

    def test_stock_in_and_out(self):
        self.assertEqual(self.move('in', '50').current_stock, Decimal('150'))
        item = self.move('out', '135')
        self.assertEqual(item.current_stock, Decimal('15'))
        self.assertEqual(item.status, 'low_stock')

    def test_out_clamps_at_zero(self):
        item = self.move('transfer', '500')
        self.assertEqual(item.current_stock, Decimal('0'))
        self.assertEqual(item.status, 'out_of_stock')

    def test_adjustment_sets_stock(self):
        self.assertEqual(self.move('adjustment', '42').current_stock, Decimal('42'))

    def test_discontinued_is_sticky(self):
        self.item.status = 'discontinued'
        self.item.save()
        self.assertEqual(self.move('out', '100').status, 'discontinued')

    def test_record_reads_current_stock(self):
        first = InventoryItem.objects.get(pk=self.item.pk)
        second = InventoryItem.objects.get(pk=self.item.pk)
        InventoryMovement.record(first, movement_type='out', quantity=Decimal('10'))
        movement, item = InventoryMovement.record(second, movement_type='out', quantity=Decimal('10'))
        self.assertEqual(item.current_stock, Decimal('80'))
        self.assertEqual(movement.item.current_stock, Decimal('80'))
        self.assertEqual(self.item.movements.count(), 2)

    def test_failed_stock_update_discards_movement(self):
        with mock.patch.object(InventoryItem, 'save', side_effect=DatabaseError('write failed')):
            with self.assertRaises(DatabaseError):
                InventoryMovement.record(self.item, movement_type='out', quantity=Decimal('10'))
        self.assertFalse(InventoryMovement.objects.exists())
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, Decimal('100'))


class HireAgreementModelTest(HerdTestBase):
    def setUp(self):
        super().setUp()
        outside = ExternalFarm.objects.create(tenant=self.tenant, farm_name='Hill Farm')
        self.agreement = HireAgreement.objects.create(
            tenant=self.tenant, farm=self.farm, agreement_type='hire_out', external_farm=outside,
            animal=self.animal('COW-001'), start_date=date.today() - timedelta(days=10),
            end_date=date.today() + timedelta(days=20), hire_fee=Decimal('120000'),
        )

    def test_payments(self):
        self.assertEqual(self.agreement.outstanding_amount, Decimal('120000'))
        self.agreement.record_payment(Decimal('20000'), date.today(), 'cash')
        self.agreement.refresh_from_db()
        self.assertEqual(self.agreement.payment_status, 'partial')
        self.assertEqual(self.agreement.outstanding_amount, Decimal('100000'))
        self.assertEqual(self.agreement.payment_method, 'cash')

        self.agreement.record_payment(Decimal('100000'), date.today(), payment_reference='MM-1')
        self.agreement.refresh_from_db()
        self.assertEqual(self.agreement.payment_status, 'paid')
        self.assertEqual(self.agreement.outstanding_amount, Decimal('0.00'))
        self.assertEqual(self.agreement.payment_method, 'cash')
        self.assertEqual(self.agreement.payment_reference, 'MM-1')

    def test_timeline(self):
        self.assertEqual(self.agreement.timeline_status, 'normal')
        self.agreement.end_date = date.today() + timedelta(days=7)
        self.assertEqual(self.agreement.timeline_status, 'expiring_soon')
        self.agreement.end_date = date.today() - timedelta(days=1)
        self.assertEqual(self.agreement.timeline_status, 'overdue')
        self.agreement.status = 'completed'
        self.assertEqual(self.agreement.timeline_status, 'completed')


class SalesModelTest(HerdTestBase):
    def test_product_total(self):
        sale = ProductSale.objects.create(tenant=self.tenant, farm=self.farm, product_type='milk',
                                          quantity=Decimal('50'), unit='liters', unit_price=Decimal('2000'))
        self.assertEqual(sale.total_amount, Decimal('100000'))

    def test_plan_limits(self):
        self.assertTrue(SubscriptionPlan.allows(-1, 10000))
        self.assertTrue(SubscriptionPlan.allows(3, 2))
        self.assertFalse(SubscriptionPlan.allows(3, 3))


class DelegationModelTest(HerdTestBase):
    def setUp(self):
        super().setUp()
        self.worker = FarmUser.objects.create(email='worker@test.com', first_name='Mike', last_name='J', tenant=self.tenant)
        self.permission = Permission.objects.create(name='manage_users', display_name='Manage Users',
                                                    category='management', action='manage_users', resource_type='user')

    def delegate(self, start, end, **extra):
        delegation = Delegation.objects.create(tenant=self.tenant, delegator=self.owner, delegate=self.worker,
                                               start_date=start, end_date=end, **extra)
        delegation.delegated_permissions.add(self.permission)
        return delegation

    def test_effective_window(self):
        now = timezone.now()
        delegation = self.delegate(now - timedelta(days=1), now + timedelta(days=1))
        self.assertTrue(delegation.is_effective())
        self.assertFalse(delegation.is_effective(now + timedelta(days=2)))
        self.assertIn('manage_users', effective_permissions(self.worker))

    def test_expired_delegation(self):
        now = timezone.now()
        delegation = self.delegate(now - timedelta(days=5), now - timedelta(days=1))
        self.assertEqual(delegation.display_status, 'expired')
        self.assertNotIn('manage_users', effective_permissions(self.worker))

    def test_revoke(self):
        now = timezone.now()
        delegation = self.delegate(now - timedelta(days=1), now + timedelta(days=1))
        delegation.revoke()
        delegation.refresh_from_db()
        self.assertEqual(delegation.status, 'revoked')
        self.assertIsNotNone(delegation.revoked_at)
        self.assertNotIn('manage_users', effective_permissions(self.worker))

    def test_full_access_from_owner(self):
        now = timezone.now()
        Delegation.objects.create(tenant=self.tenant, delegator=self.owner, delegate=self.worker,
                                  delegation_type='full_access', start_date=now - timedelta(hours=1),
                                  end_date=now + timedelta(hours=1))
        self.assertIn('manage_users', effective_permissions(self.worker))


# =====================
# DEMO DATA & PERMISSIONS
# =====================

class DemoTestBase(TestCase):
    """Loads the demo dataset once and adds an animal in a second tenant."""

    @classmethod
    def setUpTestData(cls):
        load_demo_data()
        cls.owner = FarmUser.objects.get(email='owner@demo.com')
        cls.vet = FarmUser.objects.get(email='vet@demo.com')
        cls.worker = FarmUser.objects.get(email='worker@demo.com')
        cls.superadmin = FarmUser.objects.get(email='superadmin@demo.com')
        green_valley = Tenant.objects.get(organization_name='Green Valley Farms')
        cls.other_animal = Animal.objects.create(
            tenant=green_valley, farm=Farm.objects.get(farm_name='Dairy Unit'),
            tag_number='GV-001', animal_type='cattle', gender='female',
        )

    def setUp(self):
        self.client = Client()

    def login(self, user):
        session = self.client.session
        session[SESSION_KEY] = user.pk
        session.save()

    def get_animal(self, tag):
        return Animal.objects.get(tag_number=tag)


class PermissionTest(DemoTestBase):
    def test_role_permissions(self):
        permissions = effective_permissions(self.vet)
        self.assertIn('edit_health', permissions)
        self.assertNotIn('view_financial_reports', permissions)

    def test_owner_and_super_admin(self):
        self.assertTrue(has_permission(self.owner, 'manage_roles'))
        self.assertFalse(has_permission(self.owner, 'super_admin'))
        self.assertTrue(has_permission(self.superadmin, 'super_admin'))
        self.assertFalse(has_permission(None, 'view_animals'))
        self.assertTrue(has_all_permissions(self.worker, ['view_animals', 'create_animals']))
        self.assertFalse(has_all_permissions(self.worker, ['view_animals', 'manage_users']))

    def test_primary_roles(self):
        self.assertEqual(primary_role(self.owner), 'owner')
        self.assertEqual(primary_role(self.vet), 'veterinarian')
        self.assertEqual(primary_role(self.worker), 'farm_manager')
        self.assertEqual(primary_role(self.superadmin), 'super_admin')

    def test_features(self):
        self.assertTrue(can_delete_animals(self.owner))
        self.assertFalse(can_delete_animals(self.vet))
        self.assertFalse(can_delete_animals(self.superadmin))
        self.assertTrue(can_access_feature(self.vet, 'log_castration'))
        self.assertFalse(can_access_feature(self.vet, 'view_financials'))
        self.assertFalse(can_access_feature(self.owner, 'no_such_feature'))
        self.assertFalse(can_access_feature(self.vet, 'manage_breeding'))
        self.assertTrue(can_access_feature(self.worker, 'record_hire_payments'))
        self.assertTrue(can_access_feature(self.owner, 'manage_farms'))
        self.assertFalse(can_access_feature(self.worker, 'manage_farms'))
        self.assertTrue(can_access_feature(self.superadmin, 'manage_farms'))
        self.assertFalse(can_access_feature(self.worker, 'manage_tax_rates'))

    def test_page_permissions(self):
        self.assertEqual(get_required_permissions('/animals/add/'), ['create_animals'])
        self.assertEqual(get_required_permissions('/animals/4/pedigree/'), ['view_animals'])
        self.assertEqual(get_required_permissions('/export/animals/'), ['view_animals'])
        self.assertEqual(get_required_permissions('/export/sales/'), ['view_financial_reports'])
        self.assertEqual(get_required_permissions('/platform/tenants/'), ['super_admin'])
        self.assertEqual(get_required_permissions('/breeding/analytics/'), ['view_operational_reports', 'create_breeding'])
        self.assertEqual(get_required_permissions('/breeding/4/birth/'), ['create_breeding', 'view_animals'])
        self.assertEqual(get_required_permissions('/hire-agreements/3/payment/'), ['create_breeding', 'view_financial_reports'])
        self.assertEqual(get_required_permissions('/farms/add/'), ['view_animals'])
        self.assertEqual(get_required_permissions('/tax/rates/'), ['manage_roles'])
        self.assertTrue(is_public_path('/'))
        self.assertTrue(is_public_path('/choose-user/'))
        self.assertFalse(is_public_path('/users/'))


class SeedCommandTest(TestCase):
    def test_seed_and_reseed(self):
        out = StringIO()
        call_command('seed_demo', stdout=out)
        self.assertIn("Seeded 4 tenants", out.getvalue())
        with self.assertRaises(CommandError):
            call_command('seed_demo', stdout=StringIO())
        call_command('seed_demo', '--flush', stdout=StringIO())
        self.assertEqual(Tenant.objects.count(), 4)
        self.assertEqual(FarmUser.objects.filter(email='owner@demo.com').count(), 1)

    def test_demo_lineage(self):
        load_demo_data()
        cow = Animal.objects.get(tag_number='COW-004')
        animals = list(Animal.objects.filter(tenant=cow.tenant))
        self.assertEqual(pedigree.calculate_inbreeding_coefficient(cow.pk, animals), 0.125)
        self.assertEqual(pedigree.calculate_generation_number(cow.pk, animals), 3)
        chicken_feed = InventoryItem.objects.get(item_code='FEED-CH-001')
        self.assertTrue(chicken_feed.is_low)


# =====================
# VIEW TESTS
# =====================

class ChooseUserViewTest(DemoTestBase):
    def test_lists_users(self):
        response = self.client.get(reverse('choose_user'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "John Doe")
        self.assertContains(response, "Dr. Sarah Smith")

    def test_pick_user_goes_to_role_homepage(self):
        response = self.client.post(reverse('choose_user'), {'user_id': self.vet.pk})
        self.assertRedirects(response, reverse('animal_list'))
        self.assertEqual(self.client.session[SESSION_KEY], self.vet.pk)

    def test_pick_nothing(self):
        response = self.client.post(reverse('choose_user'), {'user_id': ''})
        self.assertRedirects(response, reverse('choose_user'))

    def test_switch_user(self):
        self.login(self.owner)
        response = self.client.post(reverse('switch_user'))
        self.assertRedirects(response, reverse('choose_user'))
        self.assertNotIn(SESSION_KEY, self.client.session)

    @override_settings(HERDBOOK_DEFAULT_USER_EMAIL='')
    def test_anonymous_is_sent_to_choose_user(self):
        response = self.client.get(reverse('dashboard'))
        self.assertRedirects(response, reverse('choose_user'))

    @override_settings(HERDBOOK_DEFAULT_USER_EMAIL='owner@demo.com')
    def test_default_user(self):
        response = self.client.get(reverse('dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['farm_user'], self.owner)


class PageGateTest(DemoTestBase):
    def test_vet_cannot_see_sales(self):
        self.login(self.vet)
        response = self.client.get(reverse('sales_list'))
        self.assertEqual(response.status_code, 403)
        self.assertTemplateUsed(response, 'livestock/forbidden.html')

    def test_worker_cannot_manage_users(self):
        self.login(self.worker)
        self.assertEqual(self.client.get(reverse('user_list')).status_code, 403)
        self.assertEqual(self.client.get(reverse('sales_list')).status_code, 200)

    def test_delegated_access(self):
        now = timezone.now()
        Delegation.objects.create(tenant=self.owner.tenant, delegator=self.owner, delegate=self.worker,
                                  delegation_type='full_access', start_date=now - timedelta(hours=1),
                                  end_date=now + timedelta(hours=1))
        self.login(self.worker)
        self.assertEqual(self.client.get(reverse('user_list')).status_code, 200)

    def test_platform_is_super_admin_only(self):
        self.login(self.owner)
        self.assertEqual(self.client.get(reverse('admin_overview')).status_code, 403)
        self.login(self.superadmin)
        response = self.client.get(reverse('admin_overview'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['tenant_count'], 4)

    @override_settings(HERDBOOK_ENFORCE_PAGE_PERMISSIONS=False)
    def test_gate_can_be_disabled(self):
        self.login(self.vet)
        self.assertEqual(self.client.get(reverse('sales_list')).status_code, 200)


class DashboardViewTest(DemoTestBase):
    def test_dashboard(self):
        self.login(self.owner)
        response = self.client.get(reverse('dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "ABC Livestock Co.")
        self.assertEqual(len(response.context['due_soon']), 1)
        self.assertTrue(response.context['has_alerts'])
        self.assertEqual(response.context['active_delegations'].count(), 1)


class AnimalViewTest(DemoTestBase):
    def test_list_is_tenant_scoped(self):
        self.login(self.owner)
        response = self.client.get(reverse('animal_list'))
        self.assertContains(response, "COW-001")
        self.assertNotContains(response, "GV-001")

    def test_super_admin_sees_all_tenants(self):
        self.login(self.superadmin)
        response = self.client.get(reverse('animal_list'))
        self.assertContains(response, "GV-001")

    def test_list_filters(self):
        self.login(self.owner)
        response = self.client.get(reverse('animal_list'), {'type': 'goat'})
        self.assertEqual([a.tag_number for a in response.context['animals']], ['GOAT-001'])
        response = self.client.get(reverse('animal_list'), {'q': 'jersey'})
        self.assertIn('COW-002', [a.tag_number for a in response.context['animals']])

    def test_detail(self):
        self.login(self.owner)
        bull = self.get_animal('BULL-001')
        response = self.client.get(reverse('animal_detail', args=[bull.pk]))
        self.assertEqual(response.status_code, 200)
        tags = [a.tag_number for a in response.context['descendants']]
        self.assertEqual(tags, ['COW-003', 'COW-004', 'BULL-002'])
        self.assertEqual(response.context['generation_number'], 1)

    def test_other_tenant_animal_is_404(self):
        self.login(self.owner)
        response = self.client.get(reverse('animal_detail', args=[self.other_animal.pk]))
        self.assertEqual(response.status_code, 404)

    def test_add_animal(self):
        self.login(self.owner)
        farm = Farm.objects.get(farm_name='Main Farm')
        response = self.client.post(reverse('add_animal'), {
            'farm': farm.pk, 'tag_number': 'COW-010', 'animal_type': 'cattle', 'gender': 'female',
            'status': 'active', 'health_status': 'healthy', 'mother': self.get_animal('COW-003').pk,
        }, follow=True)
        animal = self.get_animal('COW-010')
        self.assertEqual(animal.tenant, self.owner.tenant)
        self.assertContains(response, "COW-010 added to the herd!")

    def test_add_animal_rejects_two_dams(self):
        self.login(self.owner)
        farm = Farm.objects.get(farm_name='Main Farm')
        response = self.client.post(reverse('add_animal'), {
            'farm': farm.pk, 'tag_number': 'COW-011', 'animal_type': 'cattle', 'gender': 'female',
            'status': 'active', 'health_status': 'healthy', 'mother': self.get_animal('COW-003').pk,
            'external_mother': ExternalAnimal.objects.get(tag_number='Bull-123').pk,
        })
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Animal.objects.filter(tag_number='COW-011').exists())

    def test_add_animal_respects_plan_limit(self):
        self.login(self.owner)
        plan = self.owner.tenant.plan
        plan.max_animals = self.owner.tenant.animals.count()
        plan.save()
        farm = Farm.objects.get(farm_name='Main Farm')
        response = self.client.post(reverse('add_animal'), {
            'farm': farm.pk, 'tag_number': 'COW-012', 'animal_type': 'cattle', 'gender': 'female',
            'status': 'active', 'health_status': 'healthy',
        }, follow=True)
        self.assertContains(response, "plan allows")
        self.assertFalse(Animal.objects.filter(tag_number='COW-012').exists())

    def test_delete_requires_post(self):
        self.login(self.owner)
        response = self.client.get(reverse('delete_animal', args=[self.get_animal('CHK-001').pk]))
        self.assertEqual(response.status_code, 405)

    def test_only_owner_deletes(self):
        chicken = self.get_animal('CHK-001')
        self.login(self.vet)
        response = self.client.post(reverse('delete_animal', args=[chicken.pk]), follow=True)
        self.assertContains(response, "Only the farm owner can delete animals.")
        self.assertTrue(Animal.objects.filter(pk=chicken.pk).exists())

        self.login(self.owner)
        response = self.client.post(reverse('delete_animal', args=[chicken.pk]))
        self.assertRedirects(response, reverse('animal_list'))
        self.assertFalse(Animal.objects.filter(pk=chicken.pk).exists())

    def test_tag_card(self):
        self.login(self.owner)
        response = self.client.get(reverse('animal_tag_card', args=[self.get_animal('COW-001').pk]))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "data:image/png;base64,")

    def test_activity_form_has_no_castration(self):
        form = ActivityForm(tenant=self.owner.tenant)
        self.assertNotIn('castration', [value for value, _ in form.fields['activity_type'].choices])

    def test_animal_form_rejects_future_birth(self):
        form = AnimalForm({
            'farm': Farm.objects.get(farm_name='Main Farm').pk, 'tag_number': 'X', 'animal_type': 'cattle',
            'gender': 'male', 'status': 'active', 'health_status': 'healthy',
            'birth_date': date.today() + timedelta(days=1),
        }, tenant=self.owner.tenant)
        self.assertFalse(form.is_valid())
        self.assertIn('birth_date', form.errors)

    def edit_form(self, animal, **parents):
        data = {
            'farm': animal.farm_id, 'tag_number': animal.tag_number, 'animal_type': animal.animal_type,
            'gender': animal.gender, 'status': animal.status, 'health_status': animal.health_status,
        }
        data.update({name: parent.pk for name, parent in parents.items()})
        return AnimalForm(data, instance=animal, tenant=self.owner.tenant)

    def test_animal_form_rejects_descendant_as_dam(self):
        form = self.edit_form(self.get_animal('COW-001'), mother=self.get_animal('COW-003'))
        self.assertFalse(form.is_valid())
        self.assertEqual(form.errors['mother'], ["COW-003 is a descendant of this animal."])

    def test_animal_form_rejects_descendant_as_sire(self):
        form = self.edit_form(self.get_animal('COW-002'), father=self.get_animal('BULL-002'))
        self.assertFalse(form.is_valid())
        self.assertIn("BULL-002 is a descendant of this animal.", form.errors['father'])

    def test_animal_form_keeps_real_parents(self):
        form = self.edit_form(self.get_animal('COW-003'), mother=self.get_animal('COW-001'),
                              father=self.get_animal('BULL-001'))
        self.assertTrue(form.is_valid(), form.errors)


class CastrationViewTest(DemoTestBase):
    def castrate(self, animal, **overrides):
        data = {'castration_date': date.today().isoformat(), 'method': 'surgical', 'description': 'Routine castration'}
        data.update(overrides)
        return self.client.post(reverse('castrate_animal', args=[animal.pk]), data)

    def test_castrate_bull(self):
        self.login(self.vet)
        bull = self.get_animal('BULL-002')
        response = self.castrate(bull)
        self.assertRedirects(response, reverse('animal_detail', args=[bull.pk]))
        bull.refresh_from_db()
        self.assertTrue(bull.is_castrated)
        self.assertEqual(bull.gender_label, 'Steer')
        activity = Activity.objects.get(animal=bull, activity_type='castration')
        self.assertEqual(activity.metadata, {'method': 'surgical', 'label_before': 'Bull', 'label_after': 'Steer'})
        self.assertEqual(activity.performed_by, self.vet)

    def test_female_rejected(self):
        self.login(self.owner)
        response = self.castrate(self.get_animal('COW-001'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Only male animals can be castrated.")

    def test_already_castrated(self):
        self.login(self.owner)
        response = self.castrate(self.get_animal('STR-001'))
        self.assertContains(response, "STR-001 is already castrated.")

    def test_future_date_rejected(self):
        self.login(self.owner)
        bull = self.get_animal('BULL-001')
        response = self.castrate(bull, castration_date=(date.today() + timedelta(days=2)).isoformat())
        self.assertContains(response, "Castration date cannot be in the future.")
        bull.refresh_from_db()
        self.assertFalse(bull.is_castrated)

    def test_method_required(self):
        self.login(self.owner)
        response = self.castrate(self.get_animal('BULL-001'), method='')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Activity.objects.filter(activity_type='castration', animal__tag_number='BULL-001').exists())

    def test_detail_offers_form_only_with_feature(self):
        bull = self.get_animal('BULL-002')
        self.login(self.vet)
        self.assertIsNotNone(self.client.get(reverse('animal_detail', args=[bull.pk])).context['castration_form'])

        viewer_role = Role.objects.create(tenant=self.owner.tenant, name='Viewer')
        viewer_role.permissions.add(Permission.objects.get(name='view_animals'))
        viewer = FarmUser.objects.create(email='viewer@demo.com', first_name='Vera', last_name='Viewer',
                                         tenant=self.owner.tenant)
        viewer.roles.add(viewer_role)
        self.login(viewer)
        response = self.client.get(reverse('animal_detail', args=[bull.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.context['castration_form'])
        self.assertNotContains(response, "Log castration")


class PedigreeViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.owner)
        self.cow = self.get_animal('COW-004')

    def test_pedigree_page(self):
        response = self.client.get(reverse('animal_pedigree', args=[self.cow.pk]), {'generations': '9'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['generations'], 5)
        self.assertContains(response, "BULL-001")

    def test_pedigree_api(self):
        response = self.client.get(reverse('api_animal_pedigree', args=[self.cow.pk]), {'generations': 2})
        self.assertEqual(response.status_code, 200)
        data = response.json()['pedigree']
        self.assertEqual(data['inbreeding_coefficient'], 0.125)
        self.assertEqual(data['subject_animal']['tag_number'], 'COW-004')
        self.assertEqual(data['lineage']['mother']['tag_number'], 'COW-003')
        self.assertEqual([a['tag_number'] for a in data['common_ancestors']], ['BULL-001'])

    def test_pedigree_api_external_parent(self):
        goat = self.get_animal('GOAT-001')
        data = self.client.get(reverse('api_animal_pedigree', args=[goat.pk])).json()['pedigree']
        self.assertEqual(data['lineage']['father']['tag_number'], 'Buck-456')
        self.assertEqual(data['lineage']['father']['farm_name'], 'Green Valley Goats')

    def test_pedigree_api_bad_generations(self):
        url = reverse('api_animal_pedigree', args=[self.cow.pk])
        self.assertEqual(self.client.get(url, {'generations': 'abc'}).status_code, 400)
        self.assertEqual(self.client.get(url, {'generations': '6'}).status_code, 400)
        self.assertEqual(self.client.get(url, {'generations': '0'}).status_code, 200)

    def test_optimal_mates_api(self):
        cow = self.get_animal('COW-003')
        response = self.client.get(reverse('api_optimal_mates', args=[cow.pk]))
        tags = [m['animal']['tag_number'] for m in response.json()['mates']]
        self.assertIn('BULL-001', tags)
        self.assertNotIn('STR-001', tags)
        self.assertNotIn('COW-001', tags)

    def test_inbreeding_risk_api(self):
        url = reverse('api_inbreeding_risk', args=[self.cow.pk])
        self.assertEqual(self.client.get(url).status_code, 400)
        self.assertEqual(self.client.get(url, {'mate': 'bull'}).status_code, 400)
        response = self.client.get(url, {'mate': self.get_animal('BULL-001').pk})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['risk']['risk_level'], 'low')

    def test_other_tenant_pedigree_is_404(self):
        response = self.client.get(reverse('api_animal_pedigree', args=[self.other_animal.pk]))
        self.assertEqual(response.status_code, 404)


class BreedingViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.owner)

    def test_dashboard(self):
        response = self.client.get(reverse('breeding_dashboard'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['due_soon_count'], 1)

    def test_record_internal_breeding(self):
        bred = date.today() - timedelta(days=10)
        response = self.client.post(reverse('add_breeding_record'), {
            'animal': self.get_animal('COW-002').pk, 'sire_source': 'internal',
            'sire': self.get_animal('BULL-001').pk, 'breeding_date': bred.isoformat(),
            'breeding_method': 'natural', 'pregnancy_status': 'suspected',
        })
        self.assertRedirects(response, reverse('breeding_dashboard'))
        record = BreedingRecord.objects.get(animal__tag_number='COW-002', breeding_date=bred)
        self.assertEqual(record.expected_due_date, bred + timedelta(days=280))
        self.assertEqual(record.recorded_by, self.owner)

    def test_internal_breeding_needs_sire(self):
        response = self.client.post(reverse('add_breeding_record'), {
            'animal': self.get_animal('COW-002').pk, 'sire_source': 'internal',
            'breeding_date': date.today().isoformat(), 'breeding_method': 'natural', 'pregnancy_status': 'suspected',
        })
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Select a sire from your herd.")

    def test_external_breeding_rejects_herd_sire(self):
        response = self.client.post(reverse('add_breeding_record'), {
            'animal': self.get_animal('COW-002').pk, 'sire_source': 'external',
            'sire': self.get_animal('BULL-001').pk, 'external_sire': ExternalAnimal.objects.get(tag_number='Bull-123').pk,
            'breeding_date': date.today().isoformat(), 'breeding_method': 'natural', 'pregnancy_status': 'suspected',
        })
        self.assertContains(response, "Leave the herd sire empty for an external breeding.")

    def test_vet_cannot_record_breeding(self):
        self.login(self.vet)
        response = self.client.get(reverse('add_breeding_record'))
        self.assertRedirects(response, reverse('breeding_dashboard'))

    def test_record_birth(self):
        record = BreedingRecord.objects.get(animal__tag_number='COW-001', pregnancy_status='confirmed')
        self.client.post(reverse('record_birth', args=[record.pk]), {
            'actual_birth_date': date.today().isoformat(), 'birth_outcome': 'successful', 'offspring_count': 1,
        })
        record.refresh_from_db()
        self.assertEqual(record.pregnancy_status, 'completed')

    def test_stillbirth_fails_pregnancy(self):
        record = BreedingRecord.objects.get(animal__tag_number='COW-003', pregnancy_status='suspected')
        self.client.post(reverse('record_birth', args=[record.pk]), {
            'actual_birth_date': date.today().isoformat(), 'birth_outcome': 'stillborn', 'offspring_count': 0,
        })
        record.refresh_from_db()
        self.assertEqual(record.pregnancy_status, 'failed')

    def test_record_birth_requires_post(self):
        record = BreedingRecord.objects.filter(tenant=self.owner.tenant).first()
        self.assertEqual(self.client.get(reverse('record_birth', args=[record.pk])).status_code, 405)

    def test_external_farms(self):
        response = self.client.get(reverse('external_farms'))
        self.assertContains(response, "ABC Cattle Farm")
        self.assertContains(response, "Buck-456")

    def test_vet_cannot_record_birth(self):
        self.login(self.vet)
        record = BreedingRecord.objects.get(animal__tag_number='COW-001', pregnancy_status='confirmed')
        response = self.client.post(reverse('record_birth', args=[record.pk]), {
            'actual_birth_date': date.today().isoformat(), 'birth_outcome': 'successful', 'offspring_count': 1,
        }, follow=True)
        self.assertContains(response, "You do not have permission to record births.")
        record.refresh_from_db()
        self.assertEqual(record.pregnancy_status, 'confirmed')
        self.assertIsNone(record.actual_birth_date)

    def test_vet_cannot_add_external_farm(self):
        self.login(self.vet)
        count = ExternalFarm.objects.count()
        response = self.client.post(reverse('external_farms'), {'farm_name': 'Vet Farm', 'phone': '+256 700 000 001', 'district': 'Gulu'}, follow=True)
        self.assertContains(response, "You do not have permission to add external farms.")
        self.assertEqual(ExternalFarm.objects.count(), count)
        self.assertNotContains(response, "Add external farm")

    def test_vet_cannot_add_external_animal(self):
        self.login(self.vet)
        count = ExternalAnimal.objects.count()
        response = self.client.post(reverse('add_external_animal'), {
            'external_farm': ExternalFarm.objects.get(farm_name='ABC Cattle Farm').pk, 'tag_number': 'Bull-999',
            'animal_type': 'cattle', 'gender': 'male', 'health_status': 'healthy',
        }, follow=True)
        self.assertContains(response, "You do not have permission to add external animals.")
        self.assertEqual(ExternalAnimal.objects.count(), count)

    def test_add_external_farm(self):
        self.client.post(reverse('external_farms'), {'farm_name': 'Lakeside Ranch', 'phone': '+256 700 000 002', 'district': 'Jinja'})
        self.assertEqual(ExternalFarm.objects.get(farm_name='Lakeside Ranch').tenant, self.owner.tenant)


class FinanceViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.owner)

    def test_unified_expenses(self):
        response = self.client.get(reverse('expense_list'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['totals']['total'], Decimal('425000'))
        self.assertEqual(response.context['totals']['medical'], Decimal('75000'))
        self.assertContains(response, "Hire Agreement #")

    def test_expense_source_filter(self):
        response = self.client.get(reverse('expense_list'), {'source': 'animal_hire'})
        self.assertEqual(len(response.context['expenses']), 1)
        self.assertEqual(response.context['filtered_total'], Decimal('200000'))

    def test_add_expense(self):
        farm = Farm.objects.get(farm_name='Main Farm')
        self.client.post(reverse('expense_list'), {
            'farm': farm.pk, 'expense_type': 'labor', 'description': 'Casual labour',
            'amount': '30000', 'expense_date': date.today().isoformat(),
        })
        self.assertTrue(Expense.objects.filter(description='Casual labour', created_by=self.owner).exists())

    def test_expense_amount_must_be_positive(self):
        farm = Farm.objects.get(farm_name='Main Farm')
        response = self.client.post(reverse('expense_list'), {
            'farm': farm.pk, 'expense_type': 'labor', 'description': 'Nothing',
            'amount': '0', 'expense_date': date.today().isoformat(),
        })
        self.assertContains(response, "Amount must be greater than zero.")

    def test_sales_summary_and_tax(self):
        response = self.client.get(reverse('sales_list'))
        summary = response.context['summary']
        self.assertEqual(summary['total_revenue'], Decimal('660000'))
        self.assertEqual(summary['animals_sold'], 1)
        self.assertEqual(response.context['tax_rate'].tax_code, 'VAT-TENANT-1-18')
        self.assertEqual(response.context['tax']['tax_amount'], Decimal('118800.00'))

    def test_animal_sale_marks_sold(self):
        cow = self.get_animal('COW-002')
        self.client.post(reverse('add_animal_sale'), {
            'animal': cow.pk, 'sale_date': date.today().isoformat(), 'sale_type': 'direct',
            'sale_price': '800000', 'payment_status': 'paid',
        })
        cow.refresh_from_db()
        self.assertEqual(cow.status, 'sold')
        self.assertEqual(AnimalSale.objects.get(animal=cow).farm, cow.farm)

    def test_product_sale(self):
        farm = Farm.objects.get(farm_name='Main Farm')
        self.client.post(reverse('add_product_sale'), {
            'farm': farm.pk, 'product_type': 'milk', 'quantity': '10', 'unit': 'liters',
            'unit_price': '2500', 'sale_date': date.today().isoformat(), 'payment_status': 'pending',
        })
        self.assertEqual(ProductSale.objects.get(unit_price=Decimal('2500')).total_amount, Decimal('25000'))

    def test_csv_exports(self):
        response = self.client.get(reverse('export_animals_csv'))
        self.assertEqual(response['Content-Type'], 'text/csv')
        self.assertIn('COW-001', response.content.decode())
        self.assertNotIn('GV-001', response.content.decode())
        response = self.client.get(reverse('export_expenses_csv'))
        self.assertIn('Hire Agreement #', response.content.decode())
        response = self.client.get(reverse('export_sales_csv'))
        self.assertIn('COW-005', response.content.decode())

    def test_vet_can_export_animals_only(self):
        self.login(self.vet)
        self.assertEqual(self.client.get(reverse('export_animals_csv')).status_code, 200)
        self.assertEqual(self.client.get(reverse('export_sales_csv')).status_code, 403)


class InventoryViewTest(DemoTestBase):
    def test_movement(self):
        self.login(self.owner)
        hay = InventoryItem.objects.get(item_name='Hay Bales')
        response = self.client.post(reverse('record_inventory_movement', args=[hay.pk]), {
            'movement_type': 'out', 'quantity': '20',
        }, follow=True)
        hay.refresh_from_db()
        self.assertEqual(hay.current_stock, Decimal('100'))
        self.assertContains(response, "Hay Bales: stock now")

    def test_list(self):
        self.login(self.worker)
        response = self.client.get(reverse('inventory_list'))
        self.assertEqual(response.status_code, 200)
        self.assertGreaterEqual(response.context['low_stock_count'], 1)


class TeamViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.owner)

    def test_pages_load(self):
        for name in ['user_list', 'role_list', 'permission_library', 'role_templates', 'delegation_list', 'audit_logs', 'activity_list']:
            self.assertEqual(self.client.get(reverse(name)).status_code, 200, name)

    def test_create_role_from_template(self):
        from .models import RoleTemplate
        template = RoleTemplate.objects.get(name='accountant')
        self.client.post(reverse('role_list'), {'name': 'Bookkeeper', 'template': template.pk})
        role = Role.objects.get(name='Bookkeeper')
        self.assertEqual(role.tenant, self.owner.tenant)
        self.assertEqual(set(role.permissions.values_list('name', flat=True)),
                         {'view_animals', 'view_financial_reports', 'manage_subscriptions'})

    def test_revoke_delegation(self):
        delegation = Delegation.objects.get(delegate=self.vet)
        response = self.client.post(reverse('revoke_delegation', args=[delegation.pk]), follow=True)
        self.assertContains(response, "Delegation revoked.")
        delegation.refresh_from_db()
        self.assertEqual(delegation.status, 'revoked')

        response = self.client.post(reverse('revoke_delegation', args=[delegation.pk]), follow=True)
        self.assertContains(response, "Only active delegations can be revoked.")

    def test_delegation_dates_validated(self):
        now = timezone.localtime()
        response = self.client.post(reverse('add_delegation'), {
            'delegate': self.worker.pk, 'delegation_type': 'permission',
            'delegated_permissions': [Permission.objects.get(name='manage_users').pk],
            'start_date': now.strftime('%Y-%m-%dT%H:%M'),
            'end_date': (now - timedelta(days=1)).strftime('%Y-%m-%dT%H:%M'),
        })
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "End date must be on or after the start date.")

    def test_add_delegation(self):
        now = timezone.localtime()
        response = self.client.post(reverse('add_delegation'), {
            'delegate': self.worker.pk, 'delegation_type': 'permission',
            'delegated_permissions': [Permission.objects.get(name='manage_users').pk],
            'start_date': (now - timedelta(minutes=5)).strftime('%Y-%m-%dT%H:%M'),
            'end_date': (now + timedelta(days=2)).strftime('%Y-%m-%dT%H:%M'),
        })
        self.assertRedirects(response, reverse('delegation_list'))
        self.assertIn('manage_users', effective_permissions(self.worker))

    def test_cannot_delegate_to_self(self):
        now = timezone.localtime()
        response = self.client.post(reverse('add_delegation'), {
            'delegate': self.owner.pk, 'delegation_type': 'full_access',
            'start_date': now.strftime('%Y-%m-%dT%H:%M'),
            'end_date': (now + timedelta(days=1)).strftime('%Y-%m-%dT%H:%M'),
        })
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Delegation.objects.filter(delegate=self.owner).exists())

    def test_audit_log_filter(self):
        response = self.client.get(reverse('audit_logs'), {'action': 'edit_health'})
        logs = list(response.context['logs'])
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].user, self.vet)


class PlatformViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.superadmin)

    def test_overview(self):
        response = self.client.get(reverse('admin_overview'))
        self.assertEqual(response.context['active_subscriptions'], 3)
        self.assertEqual(response.context['overdue_subscriptions'], 1)
        self.assertEqual(response.context['monthly_revenue'], Decimal('700000'))

    def test_tenants_and_subscriptions(self):
        self.assertContains(self.client.get(reverse('admin_tenants')), "Mountain View Ranch")
        self.assertContains(self.client.get(reverse('admin_subscriptions')), "Sunset Dairy Farm")

    def test_toggle_subscription(self):
        subscription = TenantSubscription.objects.get(tenant__organization_name='Mountain View Ranch')
        self.assertEqual(self.client.get(reverse('toggle_subscription', args=[subscription.pk])).status_code, 405)
        self.client.post(reverse('toggle_subscription', args=[subscription.pk]))
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, 'active')

    def test_cancelled_subscription_stays_cancelled(self):
        subscription = TenantSubscription.objects.get(tenant__organization_name='Mountain View Ranch')
        subscription.status = 'cancelled'
        subscription.save()
        response = self.client.post(reverse('toggle_subscription', args=[subscription.pk]), follow=True)
        self.assertContains(response, "cannot be toggled")
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, 'cancelled')


class HireAgreementViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.owner)
        self.hire_out = HireAgreement.objects.get(agreement_type='hire_out', animal__tag_number='COW-001')

    def agreement_data(self, **overrides):
        data = {
            'farm': Farm.objects.get(farm_name='Main Farm').pk, 'agreement_type': 'hire_in',
            'external_farm': ExternalFarm.objects.get(farm_name='ABC Cattle Farm').pk,
            'external_animal': ExternalAnimal.objects.get(tag_number='Bull-123').pk,
            'start_date': date.today().isoformat(), 'end_date': (date.today() + timedelta(days=30)).isoformat(),
            'hire_fee': '180000', 'payment_schedule': 'one_time',
        }
        data.update(overrides)
        return data

    def pay(self, agreement, amount, **extra):
        data = {'amount': amount, 'payment_date': date.today().isoformat(), 'payment_method': 'mobile_money'}
        data.update(extra)
        return self.client.post(reverse('record_hire_payment', args=[agreement.pk]), data, follow=True)

    def test_list_and_summary(self):
        response = self.client.get(reverse('hire_agreement_list'))
        self.assertEqual(response.status_code, 200)
        summary = response.context['summary']
        self.assertEqual(summary['income_received'], Decimal('0'))
        self.assertEqual(summary['expenses_paid'], Decimal('200000'))
        self.assertEqual(summary['pending_income'], Decimal('150000'))
        self.assertEqual(summary['active_count'], 2)
        self.assertEqual(summary['expiring_soon'], 1)
        self.assertContains(response, "Record payment")

    def test_filters(self):
        response = self.client.get(reverse('hire_agreement_list'), {'type': 'hire_in'})
        self.assertEqual([a.agreement_type for a in response.context['agreements']], ['hire_in'])
        response = self.client.get(reverse('hire_agreement_list'), {'payment': 'pending'})
        self.assertEqual(list(response.context['agreements']), [self.hire_out])

    def test_create_hire_in(self):
        response = self.client.post(reverse('add_hire_agreement'), self.agreement_data())
        self.assertRedirects(response, reverse('hire_agreement_list'))
        agreement = HireAgreement.objects.get(hire_fee=Decimal('180000'))
        self.assertEqual(agreement.tenant, self.owner.tenant)
        self.assertEqual(agreement.created_by, self.owner)
        self.assertEqual(agreement.payment_status, 'pending')

    def test_create_hire_out(self):
        self.client.post(reverse('add_hire_agreement'), self.agreement_data(
            agreement_type='hire_out', external_animal='', animal=self.get_animal('COW-002').pk,
            external_farm=ExternalFarm.objects.get(farm_name='Green Valley Goats').pk,
        ))
        agreement = HireAgreement.objects.get(hire_fee=Decimal('180000'))
        self.assertEqual(agreement.animal.tag_number, 'COW-002')

    def test_hire_in_needs_matching_farm(self):
        response = self.client.post(reverse('add_hire_agreement'), self.agreement_data(
            external_farm=ExternalFarm.objects.get(farm_name='Green Valley Goats').pk))
        self.assertContains(response, "That animal belongs to a different external farm.")
        response = self.client.post(reverse('add_hire_agreement'), self.agreement_data(external_animal=''))
        self.assertContains(response, "Select the animal you are hiring in.")
        self.assertFalse(HireAgreement.objects.filter(hire_fee=Decimal('180000')).exists())

    def test_dates_and_fee_validated(self):
        response = self.client.post(reverse('add_hire_agreement'), self.agreement_data(
            hire_fee='0', end_date=(date.today() - timedelta(days=1)).isoformat()))
        self.assertContains(response, "Hire fee must be greater than zero.")
        self.assertContains(response, "End date must be on or after the start date.")

    def test_partial_then_full_payment(self):
        response = self.pay(self.hire_out, '50000')
        self.assertContains(response, "is now partial")
        self.hire_out.refresh_from_db()
        self.assertEqual(self.hire_out.outstanding_amount, Decimal('100000'))

        self.pay(self.hire_out, '100000', payment_reference='MM-2024-0301')
        self.hire_out.refresh_from_db()
        self.assertEqual(self.hire_out.payment_status, 'paid')
        self.assertEqual(self.hire_out.payment_reference, 'MM-2024-0301')
        summary = self.client.get(reverse('hire_agreement_list')).context['summary']
        self.assertEqual(summary['income_received'], Decimal('150000'))
        self.assertEqual(summary['pending_income'], Decimal('0'))

    def test_overpayment_rejected(self):
        response = self.pay(self.hire_out, '150000.01')
        self.assertContains(response, "Payment exceeds the outstanding balance of 150000")
        self.hire_out.refresh_from_db()
        self.assertEqual(self.hire_out.paid_amount, Decimal('0'))

    def test_cancelled_agreement_takes_no_payment(self):
        self.hire_out.status = 'cancelled'
        self.hire_out.save()
        response = self.pay(self.hire_out, '1000')
        self.assertContains(response, "Payments cannot be recorded on a cancelled agreement.")
        self.hire_out.refresh_from_db()
        self.assertEqual(self.hire_out.paid_amount, Decimal('0'))

    def test_hire_in_payment_is_an_expense(self):
        self.client.post(reverse('add_hire_agreement'), self.agreement_data())
        agreement = HireAgreement.objects.get(hire_fee=Decimal('180000'))
        self.pay(agreement, '80000')
        totals = self.client.get(reverse('expense_list')).context['totals']
        self.assertEqual(totals['animal_hire'], Decimal('280000'))

    def test_worker_records_payment(self):
        self.login(self.worker)
        self.pay(self.hire_out, '10000')
        self.hire_out.refresh_from_db()
        self.assertEqual(self.hire_out.paid_amount, Decimal('10000'))

    def test_vet_is_kept_out(self):
        self.login(self.vet)
        self.assertEqual(self.client.get(reverse('hire_agreement_list')).status_code, 403)
        response = self.client.post(reverse('record_hire_payment', args=[self.hire_out.pk]), {
            'amount': '1000', 'payment_date': date.today().isoformat(),
        })
        self.assertEqual(response.status_code, 403)
        self.hire_out.refresh_from_db()
        self.assertEqual(self.hire_out.paid_amount, Decimal('0'))

    def test_other_tenant_agreement_is_404(self):
        self.login(FarmUser.objects.get(email='owner@greenvalley.com'))
        response = self.client.post(reverse('record_hire_payment', args=[self.hire_out.pk]), {
            'amount': '1000', 'payment_date': date.today().isoformat(),
        })
        self.assertEqual(response.status_code, 404)


class BreedingAnalyticsViewTest(DemoTestBase):
    def test_analytics(self):
        self.login(self.owner)
        response = self.client.get(reverse('breeding_analytics'))
        self.assertEqual(response.status_code, 200)
        internal = response.context['sire_stats']['internal']
        self.assertEqual(internal['total'], 4)
        self.assertEqual(internal['successful'], 3)
        self.assertEqual(internal['success_rate'], 75.0)
        external = response.context['sire_stats']['external']
        self.assertEqual(external['complications'], 1)
        self.assertEqual(external['expenses'], Decimal('200000'))
        self.assertEqual(response.context['sire_stats']['financial']['net_profit'], Decimal('-200000'))
        births = response.context['births']
        self.assertEqual(births['total_births'], 3)
        self.assertEqual(births['by_season'], {'dry': 3, 'wet': 0})

    def test_filters(self):
        self.login(self.worker)
        response = self.client.get(reverse('breeding_analytics'), {'year': '2024', 'season': 'monsoon'})
        self.assertEqual(response.context['births']['total_births'], 1)
        self.assertEqual(response.context['filters']['season'], '')
        response = self.client.get(reverse('breeding_analytics'), {'season': 'wet', 'year': 'last'})
        self.assertEqual(response.context['births']['total_births'], 0)
        self.assertEqual(response.context['filters']['year'], '')

    def test_vet_is_kept_out(self):
        self.login(self.vet)
        self.assertEqual(self.client.get(reverse('breeding_analytics')).status_code, 403)


class FarmViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.owner)

    def farm_data(self, **overrides):
        data = {'farm_name': 'East Paddock', 'location': 'Mukono', 'district': 'Mukono',
                'latitude': '0.35', 'longitude': '32.75', 'farm_type': 'beef', 'status': 'active'}
        data.update(overrides)
        return data

    def test_list(self):
        response = self.client.get(reverse('farm_list'))
        self.assertEqual([f.farm_name for f in response.context['farms']], ['Main Farm', 'North Branch'])
        self.assertFalse(response.context['can_add'])
        self.assertNotContains(response, "Dairy Unit")

    def test_plan_limit(self):
        response = self.client.post(reverse('add_farm'), self.farm_data(), follow=True)
        self.assertContains(response, "Your Basic plan allows 2 farms.")
        self.assertFalse(Farm.objects.filter(farm_name='East Paddock').exists())

    def test_add_farm(self):
        plan = self.owner.tenant.plan
        plan.max_farms = 3
        plan.save()
        response = self.client.post(reverse('add_farm'), self.farm_data())
        self.assertRedirects(response, reverse('farm_list'))
        self.assertEqual(Farm.objects.get(farm_name='East Paddock').tenant, self.owner.tenant)

    def test_coordinates_validated(self):
        farm = Farm.objects.get(farm_name='North Branch')
        response = self.client.post(reverse('edit_farm', args=[farm.pk]), self.farm_data(latitude='95'))
        self.assertContains(response, "Latitude must be between -90 and 90.")

    def test_edit_farm(self):
        farm = Farm.objects.get(farm_name='North Branch')
        self.client.post(reverse('edit_farm', args=[farm.pk]), self.farm_data(farm_name='North Branch', status='inactive'))
        farm.refresh_from_db()
        self.assertEqual(farm.status, 'inactive')
        self.assertEqual(farm.farm_type, 'beef')

    def test_worker_cannot_manage_farms(self):
        self.login(self.worker)
        self.assertEqual(self.client.get(reverse('farm_list')).status_code, 200)
        response = self.client.post(reverse('add_farm'), self.farm_data(), follow=True)
        self.assertContains(response, "Only the farm owner can add farms.")
        farm = Farm.objects.get(farm_name='Main Farm')
        self.client.post(reverse('edit_farm', args=[farm.pk]), self.farm_data())
        farm.refresh_from_db()
        self.assertEqual(farm.farm_name, 'Main Farm')

    def test_other_tenant_farm_is_404(self):
        farm = Farm.objects.get(farm_name='Dairy Unit')
        self.assertEqual(self.client.get(reverse('edit_farm', args=[farm.pk])).status_code, 404)


class TaxRateViewTest(DemoTestBase):
    def setUp(self):
        super().setUp()
        self.login(self.owner)
        self.system_rate = TaxRate.objects.get(tax_code='VAT-UG-18')

    def rate_data(self, **overrides):
        data = {'tax_name': 'Withholding', 'tax_code': 'WHT-6', 'tax_type': 'withholding_tax',
                'rate_percentage': '6', 'applies_to': 'services', 'calculation_method': 'exclusive',
                'effective_from': '2024-07-01', 'is_active': 'on'}
        data.update(overrides)
        return data

    def test_list(self):
        response = self.client.get(reverse('tax_rate_list'))
        codes = [rate.tax_code for rate, _ in response.context['rates']]
        self.assertEqual(codes, ['VAT-TENANT-1-18', 'VAT-UG-18'])
        editable = {rate.tax_code: flag for rate, flag in response.context['rates']}
        self.assertEqual(editable, {'VAT-TENANT-1-18': True, 'VAT-UG-18': False})
        self.assertEqual(response.context['current_rate'].tax_code, 'VAT-TENANT-1-18')

    def test_add_tenant_rate(self):
        response = self.client.post(reverse('tax_rate_list'), self.rate_data())
        self.assertRedirects(response, reverse('tax_rate_list'))
        rate = TaxRate.objects.get(tax_code='WHT-6')
        self.assertEqual(rate.tenant, self.owner.tenant)
        self.assertFalse(rate.is_system_default)

    def test_rate_validated(self):
        response = self.client.post(reverse('tax_rate_list'), self.rate_data(
            rate_percentage='120', effective_to='2024-01-01'))
        self.assertContains(response, "Rate must be between 0 and 100 percent.")
        self.assertContains(response, "The rate cannot end before it takes effect.")
        self.assertFalse(TaxRate.objects.filter(tax_code='WHT-6').exists())

    def test_owner_cannot_edit_system_rate(self):
        response = self.client.post(reverse('edit_tax_rate', args=[self.system_rate.pk]),
                                    self.rate_data(tax_code='VAT-UG-18', rate_percentage='20'), follow=True)
        self.assertContains(response, "System tax rates can only be changed by a super admin.")
        self.system_rate.refresh_from_db()
        self.assertEqual(self.system_rate.rate_percentage, Decimal('18.00'))

    def test_owner_edits_own_rate(self):
        rate = TaxRate.objects.get(tax_code='VAT-TENANT-1-18')
        self.client.post(reverse('edit_tax_rate', args=[rate.pk]), self.rate_data(
            tax_name='VAT', tax_code='VAT-TENANT-1-18', tax_type='vat', rate_percentage='16', applies_to='all_revenue'))
        rate.refresh_from_db()
        self.assertEqual(rate.rate_percentage, Decimal('16.00'))

    def test_super_admin_manages_system_rates(self):
        self.login(self.superadmin)
        self.client.post(reverse('edit_tax_rate', args=[self.system_rate.pk]), self.rate_data(
            tax_name='VAT', tax_code='VAT-UG-18', tax_type='vat', rate_percentage='18.5', applies_to='all_revenue'))
        self.system_rate.refresh_from_db()
        self.assertEqual(self.system_rate.rate_percentage, Decimal('18.50'))

        self.client.post(reverse('tax_rate_list'), self.rate_data(tax_code='WHT-SYS-6'))
        rate = TaxRate.objects.get(tax_code='WHT-SYS-6')
        self.assertIsNone(rate.tenant)
        self.assertTrue(rate.is_system_default)

    def test_staff_are_kept_out(self):
        for user in (self.vet, self.worker):
            self.login(user)
            self.assertEqual(self.client.get(reverse('tax_rate_list')).status_code, 403)
            self.assertEqual(self.client.post(reverse('tax_rate_list'), self.rate_data()).status_code, 403)
        self.assertFalse(TaxRate.objects.filter(tax_code='WHT-6').exists())
