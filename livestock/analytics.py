"""Breeding performance and birth-rate figures.

Plain functions over breeding records; each record needs its dam available
as ``record.animal`` for the per-species breakdowns.
"""
from collections import Counter
from decimal import Decimal

DRY_SEASON_MONTHS = (11, 12, 1, 2, 3, 4)
TOP_MONTHS = 5
MONTH_LABELS = ('Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec')


def season_of(day):
    return 'dry' if day.month in DRY_SEASON_MONTHS else 'wet'


def _offspring(record):
    return record.offspring_count or 1


def _is_successful(record):
    return record.birth_outcome == 'successful' or (
        record.pregnancy_status == 'completed' and not record.birth_outcome)


def _has_delivered(record):
    return record.birth_outcome == 'successful' or record.pregnancy_status == 'completed'


def _percentage(part, whole):
    return round(part / whole * 100, 1) if whole else 0.0


def _source_stats(records):
    total = len(records)
    successful = sum(1 for r in records if _is_successful(r))
    delivered = [r for r in records if _has_delivered(r)]
    complications = sum(1 for r in records if r.birth_outcome == 'complications' or r.complications)
    offspring = sum(_offspring(r) for r in delivered)
    return {
        'total': total,
        'successful': successful,
        'success_rate': _percentage(successful, total),
        'deliveries': len(delivered),
        'avg_offspring': round(offspring / len(delivered), 2) if delivered else 0.0,
        'complications': complications,
        'complications_rate': _percentage(complications, total),
    }


def sire_source_stats(records):
    """Compare breedings with herd sires against breedings with hired or outside sires.

    Hire money comes from the agreements linked to the records: paid hire-out
    fees on internal breedings count as revenue, and hire-in payments on
    external breedings count as expenses (the full fee once paid).
    """
    internal = [r for r in records if r.sire_source == 'internal']
    external = [r for r in records if r.sire_source == 'external']
    stats = {'internal': _source_stats(internal), 'external': _source_stats(external)}

    revenue = Decimal('0.00')
    seen = set()
    for record in internal:
        agreement = record.hire_agreement
        if agreement is not None and agreement.pk not in seen and agreement.payment_status == 'paid':
            seen.add(agreement.pk)
            revenue += agreement.hire_fee

    expenses = Decimal('0.00')
    seen = set()
    for record in external:
        agreement = record.hire_agreement
        if agreement is not None and agreement.pk not in seen:
            seen.add(agreement.pk)
            expenses += agreement.hire_fee if agreement.payment_status == 'paid' else agreement.paid_amount

    deliveries = stats['external']['deliveries']
    stats['internal']['revenue'] = revenue
    stats['external']['expenses'] = expenses
    stats['external']['cost_per_birth'] = (expenses / deliveries).quantize(Decimal('0.01')) if deliveries else Decimal('0.00')
    stats['financial'] = {'revenue': revenue, 'expenses': expenses, 'net_profit': revenue - expenses}
    return stats


def birth_rate_stats(records, animal_type=None, season=None, year=None):
    """Successful births broken down by month, species and season.

    Counts are offspring, a record without a count standing for one birth.
    Filters that are None or empty are ignored.
    """
    years = sorted({r.actual_birth_date.year for r in records if r.actual_birth_date}, reverse=True)

    births = []
    for record in records:
        if record.birth_outcome != 'successful' or not record.actual_birth_date:
            continue
        if animal_type and record.animal.animal_type != animal_type:
            continue
        if season and season_of(record.actual_birth_date) != season:
            continue
        if year and record.actual_birth_date.year != int(year):
            continue
        births.append(record)

    monthly = Counter()
    by_type = Counter()
    by_season = {'dry': 0, 'wet': 0}
    for record in births:
        born = record.actual_birth_date
        monthly[(born.year, born.month)] += _offspring(record)
        by_type[record.animal.animal_type] += _offspring(record)
        by_season[season_of(born)] += _offspring(record)

    months = [
        {'year': y, 'month': m, 'label': f"{MONTH_LABELS[m - 1]} {y}", 'count': monthly[(y, m)]}
        for y, m in sorted(monthly)
    ]
    total = sum(monthly.values())
    return {
        'total_births': total,
        'average_per_month': round(total / len(months), 1) if months else 0.0,
        'monthly': months,
        'top_months': sorted(months, key=lambda row: row['count'], reverse=True)[:TOP_MONTHS],
        'by_type': dict(sorted(by_type.items())),
        'by_season': by_season,
        'available_years': years,
    }
