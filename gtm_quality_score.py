#!/usr/bin/env python3
"""
GTM Quality Score
Combines the per-dimension results into one 0-100 score and builds the
prioritized action plan.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from gtm_quality_config import QualityConfig

logger = logging.getLogger(__name__)

DIMENSION_LABELS = {
    'tags': 'Tag cleanliness',
    'triggers': 'Trigger cleanliness',
    'variables': 'Variable cleanliness',
    'consent': 'Consent Mode',
    'trigger_quality': 'Trigger configuration',
    'variable_quality': 'Variable configuration',
    'html_security': 'Custom HTML security',
}


@dataclass
class ScoreComponent:
    key: str
    label: str
    value: float
    weight: float
    available: bool
    contribution: float

    def to_dict(self) -> Dict:
        return {
            'key': self.key,
            'label': self.label,
            'value': self.value,
            'weight': self.weight,
            'available': self.available,
            'contribution': self.contribution,
        }


@dataclass
class QualityScore:
    total: float
    breakdown: List[ScoreComponent] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'total': self.total,
            'breakdown': [component.to_dict() for component in self.breakdown],
            'unavailable': list(self.unavailable),
        }


def cleanliness(total: int, clean: int) -> float:
    """Percentage of clean entities; an empty collection is 100"""
    if total <= 0:
        return 100.0
    return clean / total * 100


def aggregate_quality_score(values: Dict[str, Optional[float]], config: QualityConfig = None) -> QualityScore:
    """
    Weighted mean of the dimension values (each 0-100).

    A value of None marks a dimension whose analyzer failed; it is left out and
    the remaining weights are renormalized.
    """
    config = config or QualityConfig()
    weights = config.score_weights

    available_weight = sum(weights[key] for key in DIMENSION_LABELS
                           if values.get(key) is not None)
    breakdown = []
    unavailable = []
    total = 0.0

    for key, label in DIMENSION_LABELS.items():
        value = values.get(key)
        weight = weights[key]
        if value is None:
            unavailable.append(key)
            breakdown.append(ScoreComponent(key, label, 0.0, weight, False, 0.0))
            continue
        value = min(100.0, max(0.0, float(value)))
        share = weight / available_weight if available_weight > 0 else 0.0
        contribution = value * share
        total += contribution
        breakdown.append(ScoreComponent(key, label, round(value, 1), weight, True, round(contribution, 2)))

    if available_weight <= 0:
        total = 0.0
    total = min(100.0, max(0.0, round(total, 1)))

    if unavailable:
        logger.warning('Quality score computed without: %s', ', '.join(unavailable))

    return QualityScore(total=total, breakdown=breakdown, unavailable=unavailable)


# type -> (priority, action, description, impact in score points)
ACTION_CATALOG = {
    'double_pageview': (0, 'Fix double page_view',
                        'Double page_view detected, GA4 data is duplicated', 10),
    'consent_mode': (1, 'Configure Consent Mode',
                     'Marketing tags without complete consent settings, compliance risk', 8),
    'html_security': (1.5, 'Review Custom HTML security',
                      'Custom HTML tags with security problems', 8),
    'trigger_quality': (2, 'Optimize triggers',
                        'Triggers with configuration problems, performance impact', 6),
    'variable_quality': (2.5, 'Optimize variables',
                         'Variables with configuration problems, reliability impact', 5),
    'ua_obsolete': (3, 'Migrate to GA4',
                    'Universal Analytics is obsolete and must be migrated to GA4', 5),
    'paused': (4, 'Consider removing paused tags',
               'Paused tags weigh down the container', 2),
    'unused': (5, 'Delete unused elements',
               'Unused triggers and variables add noise', 3),
    'naming': (6, 'Standardize names',
               'Inconsistent names make maintenance harder', 1),
}


def build_action_plan(counts: Dict[str, int]) -> List[Dict]:
    """Turn problem counts into actions sorted by priority"""
    actions = []
    for action_type, (priority, action, description, impact) in ACTION_CATALOG.items():
        count = counts.get(action_type, 0)
        if not count:
            continue
        actions.append({
            'type': action_type,
            'priority': priority,
            'count': int(count),
            'action': action,
            'description': description,
            'impact': impact,
        })
    return sorted(actions, key=lambda item: item['priority'])
