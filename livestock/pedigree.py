"""Lineage and pedigree helpers.

Everything here works on plain sequences of animals (saved or unsaved model
instances) and resolves relations through the ``*_id`` attributes, so callers
load the tenant's herd once and pass it in.
"""
from datetime import date, timedelta

COMMON_ANCESTOR_DEPTH = 5
COMMON_ANCESTOR_WEIGHT = 0.125

FEMALE_LABELS = {'cattle': 'Cow', 'goat': 'Doe', 'sheep': 'Ewe', 'pig': 'Sow'}
CASTRATED_LABELS = {'cattle': 'Steer', 'goat': 'Wether', 'sheep': 'Wether', 'pig': 'Barrow'}
INTACT_LABELS = {'cattle': 'Bull', 'goat': 'Buck', 'sheep': 'Ram', 'pig': 'Boar'}


class AnimalNotFound(LookupError):
    pass


class PedigreeCycleError(ValueError):
    pass


def gender_label(animal):
    if animal.gender == 'female':
        return FEMALE_LABELS.get(animal.animal_type, 'Female')
    if animal.is_castrated:
        return CASTRATED_LABELS.get(animal.animal_type, 'Castrated Male')
    return INTACT_LABELS.get(animal.animal_type, 'Male')


def can_breed(animal):
    if animal.gender == 'female':
        return True
    return animal.gender == 'male' and not animal.is_castrated


def _index(items):
    # First occurrence wins, like a linear find.
    index = {}
    for item in items:
        index.setdefault(item.pk, item)
    return index


def _traits(animal):
    return list(getattr(animal, 'traits', None) or [])


def _internal_node(animal, depth):
    return {
        'animal_id': animal.pk,
        'animal_type': 'internal',
        'tag_number': animal.tag_number,
        'breed': animal.breed,
        'gender': animal.gender,
        'birth_date': animal.birth_date,
        'generation': depth,
        'breeding_value': animal.breeding_value,
        'inbreeding_coefficient': animal.inbreeding_coefficient,
        'traits': _traits(animal),
    }


def _external_node(external, default_gender, depth):
    birth_date = None
    if external.age_years:
        birth_date = date.today() - timedelta(days=external.age_years * 365)
    farm_name = external.external_farm.farm_name if external.external_farm_id else None
    return {
        'external_animal_id': external.pk,
        'animal_type': 'external',
        'tag_number': external.tag_number or 'Unknown',
        'breed': external.breed,
        'gender': external.gender or default_gender,
        'birth_date': birth_date,
        'farm_name': farm_name,
        'generation': depth + 1,
    }


def _walk_ancestors(animal_id, generations, herd, externals, depth):
    animal = herd.get(animal_id)
    if animal is None:
        return None

    node = _internal_node(animal, depth)
    if generations <= 0:
        return node

    parents = (
        ('mother', animal.mother_id, animal.external_mother_id, 'female'),
        ('father', animal.father_id, animal.external_father_id, 'male'),
    )
    for key, internal_id, external_id, default_gender in parents:
        if internal_id:
            parent = _walk_ancestors(internal_id, generations - 1, herd, externals, depth + 1)
            if parent:
                node[key] = parent
        elif external_id:
            external = externals.get(external_id)
            if external:
                node[key] = _external_node(external, default_gender, depth)
    return node


def get_ancestors(animal_id, generations, animals, external_animals=()):
    """Return the lineage tree of an animal, ``generations`` levels deep.

    Each node is a dict; parents live under the ``mother`` and ``father``
    keys, which are absent when unknown or past the generation budget.
    External parents are leaves. Returns None for an unknown animal.
    """
    return _walk_ancestors(animal_id, generations, _index(animals), _index(external_animals), 0)


def get_descendants(animal_id, animals, breeding_records):
    """Offspring, grandoffspring and so on, in discovery order."""
    herd = _index(animals)
    descendants = []
    collected = set()
    processed = set()

    def collect(parent_id):
        if parent_id in processed:
            return
        processed.add(parent_id)
        for record in breeding_records:
            if record.animal_id != parent_id and record.sire_id != parent_id:
                continue
            for offspring_id in record.offspring_ids:
                offspring = herd.get(offspring_id)
                if offspring is not None and offspring.pk not in collected:
                    collected.add(offspring.pk)
                    descendants.append(offspring)
                    collect(offspring.pk)

    collect(animal_id)
    return descendants


def find_parentage_descendants(animal_id, animals):
    """Descendants found through recorded mother/father links, breadth first."""
    children = {}
    for animal in animals:
        for parent_id in {animal.mother_id, animal.father_id}:
            if parent_id:
                children.setdefault(parent_id, []).append(animal)

    descendants = []
    seen = {animal_id}
    queue = [animal_id]
    while queue:
        for child in children.get(queue.pop(0), []):
            if child.pk not in seen:
                seen.add(child.pk)
                descendants.append(child)
                queue.append(child.pk)
    return descendants


def _ancestor_ids(start_id, herd):
    # Ordered walk: the parent itself, then its mother's line, then its father's.
    found = {}

    def collect(animal_id, depth):
        if not animal_id or depth > COMMON_ANCESTOR_DEPTH:
            return
        animal = herd.get(animal_id)
        if animal is None:
            return
        found.setdefault(animal.pk, None)
        collect(animal.mother_id, depth + 1)
        collect(animal.father_id, depth + 1)

    collect(start_id, 0)
    return list(found)


def _common_ancestors(animal_id, herd):
    animal = herd.get(animal_id)
    if animal is None:
        return []
    maternal = _ancestor_ids(animal.mother_id, herd)
    paternal = set(_ancestor_ids(animal.father_id, herd))
    return [herd[pk] for pk in maternal if pk in paternal]


def find_common_ancestors(animal_id, animals, external_animals=()):
    """Animals that appear in both the dam's and the sire's lines.

    Only internal animals are tracked; the walk stops five generations up.
    """
    return _common_ancestors(animal_id, _index(animals))


def calculate_inbreeding_coefficient(animal_id, animals, external_animals=()):
    """Simplified inbreeding estimate: 0.125 per common ancestor, capped at 1."""
    herd = _index(animals)
    animal = herd.get(animal_id)
    if animal is None or not animal.mother_id or not animal.father_id:
        return 0
    if animal.mother_id == animal.father_id:
        return 1.0

    common = _common_ancestors(animal_id, herd)
    if not common:
        return 0
    return min(COMMON_ANCESTOR_WEIGHT * len(common), 1.0)


def calculate_generation_number(animal_id, animals):
    """Generation counted from foundation stock (animals without parents are 1)."""
    herd = _index(animals)

    def generation(current_id, path):
        animal = herd.get(current_id)
        if animal is None:
            return 0
        if animal.generation_number is not None:
            return animal.generation_number
        if not animal.mother_id and not animal.father_id:
            return 1
        if current_id in path:
            raise PedigreeCycleError(f"Animal {current_id} appears in its own ancestry")
        path = path | {current_id}
        parent_generation = 0
        for parent_id in (animal.mother_id, animal.father_id):
            if parent_id:
                parent_generation = max(parent_generation, generation(parent_id, path))
        return parent_generation + 1

    return generation(animal_id, frozenset())


def build_pedigree_data(animal_id, generations, animals, external_animals=(), breeding_records=()):
    herd = _index(animals)
    animal = herd.get(animal_id)
    if animal is None:
        raise AnimalNotFound(f"Animal {animal_id} not found")

    root = _walk_ancestors(animal_id, generations, herd, _index(external_animals), 0)

    def build_line(node, line, gen):
        if not node or gen > generations:
            return
        line.append(node)
        if node.get('mother'):
            build_line(node['mother'], line, gen + 1)
        if node.get('father'):
            build_line(node['father'], line, gen + 1)

    maternal_line = []
    paternal_line = []
    build_line(root.get('mother'), maternal_line, 1)
    build_line(root.get('father'), paternal_line, 1)

    expected = 2 ** (generations + 1) - 2
    tracked = len(maternal_line) + len(paternal_line)
    missing = expected - tracked
    completeness = (tracked / expected) * 100 if expected > 0 else 0

    coefficient = calculate_inbreeding_coefficient(animal_id, animals, external_animals)
    common = _common_ancestors(animal_id, herd)

    return {
        'subject_animal_id': animal_id,
        'subject_animal': animal,
        'generations': generations,
        'lineage': root,
        'maternal_line': maternal_line,
        'paternal_line': paternal_line,
        'inbreeding_coefficient': coefficient,
        'common_ancestors': common,
        'genetic_diversity_score': max(0, 100 - coefficient * 100 - missing * 2),
        'total_ancestors_tracked': tracked,
        'missing_ancestors': missing,
        'completeness_percentage': completeness,
    }


def analyze_genetic_diversity(animal_id, animals, external_animals=()):
    pedigree = build_pedigree_data(animal_id, 3, animals, external_animals)
    coefficient = pedigree['inbreeding_coefficient'] or 0
    completeness = pedigree['completeness_percentage']
    common = pedigree['common_ancestors']

    score = 100
    factors = []
    recommendations = []

    if coefficient > 0.1:
        score -= 40
        factors.append(f"High inbreeding coefficient ({coefficient:.3f})")
        recommendations.append("Consider outcrossing with unrelated animals")
    elif coefficient > 0.05:
        score -= 20
        factors.append(f"Moderate inbreeding ({coefficient:.3f})")
        recommendations.append("Monitor genetic diversity, consider introducing new bloodlines")

    if completeness < 50:
        score -= 30
        factors.append(f"Incomplete lineage data ({completeness:.1f}% complete)")
        recommendations.append("Document missing ancestors to improve genetic tracking")
    elif completeness < 75:
        score -= 15
        factors.append(f"Partially complete lineage ({completeness:.1f}% complete)")
        recommendations.append("Complete lineage documentation for better genetic analysis")

    if len(common) > 2:
        score -= 10
        factors.append(f"{len(common)} common ancestors in lineage")
        recommendations.append("Multiple common ancestors detected - consider diverse breeding")

    score = max(0, min(100, score))

    if score > 80:
        recommendations.append("Excellent genetic diversity - maintain current breeding strategy")
    elif score > 60:
        recommendations.append("Good genetic diversity - continue monitoring")
    else:
        recommendations.append("Genetic diversity needs improvement - prioritize outcrossing")

    return {'score': score, 'factors': factors, 'recommendations': recommendations}


def predict_offspring_traits(dam, sire):
    """Expected traits of a pairing. External sires carry no trait data."""
    dam_traits = {t.get('trait_name') for t in _traits(dam)}
    sire_traits = {t.get('trait_name') for t in _traits(sire)}

    names = []
    for trait in _traits(dam) + _traits(sire):
        name = trait.get('trait_name')
        if name not in names:
            names.append(name)

    predictions = []
    for name in names:
        if name in dam_traits and name in sire_traits:
            predictions.append({'trait': name, 'probability': 0.85, 'inherited_from': 'both'})
        elif name in dam_traits:
            predictions.append({'trait': name, 'probability': 0.50, 'inherited_from': 'mother'})
        else:
            predictions.append({'trait': name, 'probability': 0.50, 'inherited_from': 'father'})
    return predictions


def _shared_ancestors(first_id, second_id, herd):
    second = {a.pk for a in _common_ancestors(second_id, herd)}
    return [a for a in _common_ancestors(first_id, herd) if a.pk in second]


def find_optimal_mates(animal_id, animals, breeding_records=()):
    """Score every eligible partner for an animal, best match first."""
    herd = _index(animals)
    animal = herd.get(animal_id)
    if animal is None:
        return []

    candidates = [
        a for a in animals
        if a.pk != animal_id
        and a.gender != animal.gender
        and a.status == 'active'
        and can_breed(a)
        and can_breed(animal)
        and a.animal_type == animal.animal_type
    ]

    results = []
    for mate in candidates:
        reasons = []
        score = 100

        shared = _shared_ancestors(animal_id, mate.pk, herd)
        if shared:
            score -= len(shared) * 20
            reasons.append(f"{len(shared)} shared ancestor(s) - inbreeding risk")
        else:
            score += 10
            reasons.append("No shared ancestors - good genetic diversity")

        breeding_value = mate.breeding_value or 0
        if breeding_value > 80:
            score += 15
            reasons.append("High breeding value mate")
        elif breeding_value > 60:
            score += 5
            reasons.append("Good breeding value")

        if mate.parentage_verified:
            score += 5
            reasons.append("Verified parentage")

        results.append({
            'animal': mate,
            'compatibility_score': max(0, min(100, score)),
            'reasons': reasons,
            'expected_inbreeding': COMMON_ANCESTOR_WEIGHT if shared else 0,
        })

    return sorted(results, key=lambda r: r['compatibility_score'], reverse=True)


def assess_inbreeding_risk(animal_id, mate_id, animals, external_animals=()):
    herd = _index(animals)
    if animal_id not in herd or mate_id not in herd:
        return {
            'risk_level': 'low',
            'inbreeding_coefficient': 0,
            'common_ancestors': [],
            'recommendation': "Cannot assess - animals not found",
        }

    shared = _shared_ancestors(animal_id, mate_id, herd)
    coefficient = len(shared) * COMMON_ANCESTOR_WEIGHT

    if coefficient > 0.25:
        level = 'extreme'
        recommendation = "EXTREME RISK: Do not breed these animals. High risk of genetic defects."
    elif coefficient > 0.1:
        level = 'high'
        recommendation = "HIGH RISK: Strongly consider alternative mates. Monitor offspring closely."
    elif coefficient > 0.05:
        level = 'medium'
        recommendation = "MODERATE RISK: Proceed with caution. Consider genetic testing."
    else:
        level = 'low'
        recommendation = "LOW RISK: Safe to breed. Good genetic diversity."

    return {
        'risk_level': level,
        'inbreeding_coefficient': coefficient,
        'common_ancestors': shared,
        'recommendation': recommendation,
    }
