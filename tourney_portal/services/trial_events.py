"""Trial events: named, divisioned events that exist only as tournament text.

A trial event has no catalog row and no foreign key anywhere. Tournaments
declare them in a JSON text column using one of two historical formats:

    ["Robot Skills", "Forensics Trial"]
    [{"name": "Robot Skills", "division": "C"}, {"name": "Forensics Trial"}]

Everything downstream (registrations, staff scoping, test provenance) matches
them by case-insensitive name plus division.
"""
import json
import logging

from tourney_portal.errors import ValidationError
from tourney_portal.models import DIVISION_B, DIVISION_C
from tourney_portal.services.catalog import divisions_for

logger = logging.getLogger(__name__)

_TRIAL_DIVISIONS = (DIVISION_B, DIVISION_C)


class TrialEvent:
    """Value object for a ``(name, division)`` pair with case-insensitive name equality."""

    __slots__ = ('name', 'division')

    def __init__(self, name, division):
        self.name = str(name).strip()
        self.division = division

    @property
    def key(self):
        return trial_event_key(self.name, self.division)

    def __eq__(self, other):
        if not isinstance(other, TrialEvent):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key)

    def __repr__(self):
        return f'TrialEvent({self.name!r}, {self.division!r})'

    def to_dict(self):
        return {'name': self.name, 'division': self.division}


def trial_event_key(name, division):
    return f'{str(name or "").strip().lower()}::{division or ""}'


def name_key(name):
    return str(name or '').strip().lower()


def normalize_division(value, fallback=None):
    text = str(value or '').strip().upper()
    if text in _TRIAL_DIVISIONS:
        return text
    return fallback


def _load_json_array(raw, source):
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw
    text = str(raw).strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        logger.warning('Ignoring malformed trial event JSON on %s', source)
        return []
    if not isinstance(parsed, list):
        logger.warning('Ignoring non-list trial event JSON on %s', source)
        return []
    return parsed


def parse_trial_events(raw, fallback_division, source='tournament'):
    """Normalize a tournament's trial-event declaration.

    Bare strings and objects without a division take the tournament's own
    division; a ``B&C`` tournament declares such an event for both divisions.
    Names are trimmed, empties dropped, duplicates collapsed on name+division.
    Malformed JSON yields an empty list.
    """
    fallback_divisions = divisions_for(fallback_division)
    seen = set()
    normalized = []

    for item in _load_json_array(raw, source):
        if isinstance(item, str):
            name = item.strip()
            explicit = None
        elif isinstance(item, dict) and 'name' in item:
            name = str(item.get('name') or '').strip()
            explicit = normalize_division(item.get('division'))
        else:
            continue
        if not name:
            continue

        for division in ((explicit,) if explicit else fallback_divisions):
            trial_event = TrialEvent(name, division)
            if trial_event.key in seen:
                continue
            seen.add(trial_event.key)
            normalized.append(trial_event)

    return normalized


def parse_trial_event_names(raw, source='staff invitation'):
    """Names listed in a staff invitation's trial-event field (either format)."""
    names = []
    seen = set()
    for item in _load_json_array(raw, source):
        if isinstance(item, str):
            name = item.strip()
        elif isinstance(item, dict):
            name = str(item.get('name') or '').strip()
        else:
            continue
        if not name or name_key(name) in seen:
            continue
        seen.add(name_key(name))
        names.append(name)
    return names


def dedupe_requested_selections(selections):
    """Trim and dedupe raw ``{name, division?}`` picks before they are resolved."""
    seen = set()
    deduped = []
    for selection in selections or []:
        if not isinstance(selection, dict):
            continue
        name = str(selection.get('name') or '').strip()
        if not name:
            continue
        division = normalize_division(selection.get('division'))
        key = trial_event_key(name, division)
        if key in seen:
            continue
        seen.add(key)
        deduped.append({'name': name, 'division': division})
    return deduped


def resolve_requested_trial_events(requested, available, fallback_division):
    """Resolve requested picks against a tournament's declared trial events.

    An explicit division must match exactly. Without one, a single candidate
    division is adopted; with several, the tournament's own division is used
    and must itself be a candidate. Raises ``ValidationError`` otherwise.
    """
    if not requested:
        return []

    candidates_by_name = {}
    for trial_event in available:
        candidates_by_name.setdefault(name_key(trial_event.name), []).append(trial_event)

    resolved = []
    seen = set()
    for selection in requested:
        name = str(selection.get('name') or '').strip()
        division = normalize_division(selection.get('division'))
        candidates = candidates_by_name.get(name_key(name), [])
        if not candidates:
            raise ValidationError(f'Invalid trial event selection: {name}')

        candidate_divisions = [candidate.division for candidate in candidates]
        if division:
            if division not in candidate_divisions:
                raise ValidationError(
                    f'Trial event "{name}" is not available for Division {division}'
                )
            resolved_division = division
        elif len(candidates) == 1:
            resolved_division = candidates[0].division
        else:
            resolved_division = normalize_division(fallback_division)
            if resolved_division not in candidate_divisions:
                raise ValidationError(f'Trial event "{name}" requires a division')

        trial_event = TrialEvent(name, resolved_division)
        if trial_event.key in seen:
            continue
        seen.add(trial_event.key)
        resolved.append(trial_event)

    return resolved
