from decimal import Decimal, ROUND_HALF_UP

HIRE_EXPENSE_ID_OFFSET = 10000
MEDICAL_KEYWORDS = ('medical', 'veterinary', 'vet')
EXPENSE_SOURCES = ('manual', 'medical', 'animal_hire')
CENT = Decimal('0.01')


def _is_medical(expense):
    if expense.expense_type == 'medicine':
        return True
    description = (expense.description or '').lower()
    return any(word in description for word in MEDICAL_KEYWORDS)


def _expense_row(expense):
    return {
        'id': expense.pk,
        'tenant_id': expense.tenant_id,
        'farm_id': expense.farm_id,
        'expense_type': expense.expense_type,
        'description': expense.description,
        'amount': expense.amount,
        'expense_date': expense.expense_date,
        'vendor': expense.vendor,
        'payment_method': expense.payment_method,
        'receipt_url': expense.receipt_url,
        'created_at': expense.created_at,
        'source': 'medical' if _is_medical(expense) else 'manual',
        'source_id': None,
        'source_reference': '',
    }


def _hire_row(agreement):
    farm_name = agreement.external_farm.farm_name if agreement.external_farm_id else ''
    tag = agreement.external_animal_tag
    return {
        'id': HIRE_EXPENSE_ID_OFFSET + agreement.pk,
        'tenant_id': agreement.tenant_id,
        'farm_id': agreement.farm_id,
        'expense_type': 'animal_hire',
        'description': f"Animal hire: {tag or 'External Animal'} from {farm_name or 'External Farm'}",
        'amount': agreement.paid_amount,
        'expense_date': agreement.payment_date or agreement.start_date,
        'vendor': farm_name or 'External Farm',
        'payment_method': agreement.payment_method,
        'receipt_url': f"Reference: {agreement.payment_reference}" if agreement.payment_reference else '',
        'created_at': agreement.created_at,
        'source': 'animal_hire',
        'source_id': agreement.pk,
        'source_reference': f"Hire Agreement #{agreement.pk}",
    }


def aggregate_all_expenses(expenses, hire_agreements=()):
    """Merge manual expenses with paid hire-in agreements, newest first."""
    rows = [_expense_row(e) for e in expenses]
    for agreement in hire_agreements:
        if agreement.agreement_type == 'hire_in' and agreement.paid_amount and agreement.paid_amount > 0:
            rows.append(_hire_row(agreement))
    return sorted(rows, key=lambda row: row['expense_date'], reverse=True)


def get_expenses_by_source(rows, source=None):
    if not source:
        return rows
    return [row for row in rows if row['source'] == source]


def get_expenses_by_type(rows, expense_type=None):
    if not expense_type:
        return rows
    return [row for row in rows if row['expense_type'] == expense_type]


def get_total_by_source(rows):
    totals = {'total': Decimal('0.00')}
    for source in EXPENSE_SOURCES:
        totals[source] = Decimal('0.00')
    for row in rows:
        totals['total'] += row['amount']
        totals[row['source']] += row['amount']
    return totals


def sales_summary(animal_sales, product_sales):
    summary = {
        'animal_revenue': Decimal('0.00'),
        'product_revenue': Decimal('0.00'),
        'paid': Decimal('0.00'),
        'pending': Decimal('0.00'),
        'animals_sold': 0,
        'by_product': {},
    }
    for sale in animal_sales:
        summary['animal_revenue'] += sale.sale_price
        summary['animals_sold'] += 1
        key = 'paid' if sale.payment_status == 'paid' else 'pending'
        summary[key] += sale.sale_price
    for sale in product_sales:
        summary['product_revenue'] += sale.total_amount
        key = 'paid' if sale.payment_status == 'paid' else 'pending'
        summary[key] += sale.total_amount
        by_product = summary['by_product']
        by_product[sale.product_type] = by_product.get(sale.product_type, Decimal('0.00')) + sale.total_amount
    summary['total_revenue'] = summary['animal_revenue'] + summary['product_revenue']
    return summary


def calculate_tax(amount, rate_percentage, method='exclusive'):
    """Split an amount into revenue and tax.

    Exclusive rates are added on top of the amount; inclusive rates are
    already part of it.
    """
    amount = Decimal(str(amount))
    rate = Decimal(str(rate_percentage))
    if method == 'inclusive':
        tax = amount * rate / (Decimal('100') + rate)
        revenue = amount - tax
        total = amount
    elif method == 'exclusive':
        tax = amount * rate / Decimal('100')
        revenue = amount
        total = amount + tax
    else:
        raise ValueError(f"Unknown tax calculation method: {method}")
    return {
        'revenue_amount': revenue.quantize(CENT, rounding=ROUND_HALF_UP),
        'tax_amount': tax.quantize(CENT, rounding=ROUND_HALF_UP),
        'total_amount': total.quantize(CENT, rounding=ROUND_HALF_UP),
    }


def applicable_tax_rate(rates, applies_to, on_date):
    """First effective rate for a revenue source; tenant rates win over system ones."""
    matching = [
        r for r in rates
        if r.applies_to in (applies_to, 'all_revenue') and r.is_effective_on(on_date)
    ]
    matching.sort(key=lambda r: r.tenant_id is None)
    return matching[0] if matching else None


def hire_agreement_summary(agreements):
    """Money in from hire-outs, money out to hire-ins, and what is still owed."""
    summary = {
        'income_received': Decimal('0.00'),
        'expenses_paid': Decimal('0.00'),
        'pending_income': Decimal('0.00'),
        'pending_expenses': Decimal('0.00'),
        'active_count': 0,
        'expiring_soon': 0,
    }
    for agreement in agreements:
        incoming = agreement.agreement_type == 'hire_out'
        summary['income_received' if incoming else 'expenses_paid'] += agreement.paid_amount
        if agreement.payment_status in ('pending', 'partial') and agreement.status != 'cancelled':
            summary['pending_income' if incoming else 'pending_expenses'] += agreement.outstanding_amount
        if agreement.status == 'active':
            summary['active_count'] += 1
            if 0 < agreement.days_remaining <= 7:
                summary['expiring_soon'] += 1
    return summary
