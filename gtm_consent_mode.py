#!/usr/bin/env python3
"""
GTM Consent Mode Coverage
Checks that every marketing tag declares the Consent Mode v2 categories its
vendor requires (analytics_storage, ad_storage, ad_user_data, ad_personalization).
"""

import logging
from typing import Dict, List, Tuple

from gtm_container import GTMContainer, Issue, Tag, as_list, is_truthy, status_message
from gtm_quality_config import QualityConfig
from gtm_taxonomy import ALL_CONSENTS, CONSENT_AWARE_TYPES, is_marketing_tag, required_consents

logger = logging.getLogger(__name__)

CONSENT_PARAMETER_KEYS = ('consentSettings', 'consent_type') + ALL_CONSENTS
NOT_CONFIGURED = 'not_configured'


def _consent_types(value) -> List[str]:
    """Read consent categories from a consentType / consentRequired value"""
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, dict):
        if 'list' in value:
            return _consent_types(value['list'])
        if 'value' in value:
            return _consent_types(value['value'])
        return []
    if isinstance(value, list):
        found = []
        for item in value:
            found.extend(_consent_types(item))
        return found
    return []


def _read_block(block: Dict, present: List[str], raw_values: List) -> bool:
    """Collect categories from a consentSettings block; True if the block says NOT_SET"""
    status = block.get('consentStatus')
    if isinstance(status, str):
        raw_values.append(status)
    for key in ('consentType', 'consentRequired'):
        for consent in _consent_types(block.get(key)):
            raw_values.append(consent)
            if consent in ALL_CONSENTS and consent not in present:
                present.append(consent)
    return isinstance(status, str) and status.upper() == 'NOT_SET'


def extract_tag_consent(tag: Tag) -> Tuple[List[str], bool, bool]:
    """
    Return (present categories, has consent information, explicitly unset).

    Reads the GTM consentSettings block and consent parameters such as
    ad_storage = 'true' or a nested consentSettings map.
    """
    present = []
    raw_values = []
    has_info = False
    not_set = False

    block = tag.consent_settings
    if block is not None:
        has_info = True
        not_set = _read_block(block, present, raw_values)

    for param in tag.parameters:
        if not isinstance(param, dict) or param.get('key') not in CONSENT_PARAMETER_KEYS:
            continue
        has_info = True
        key = param['key']
        value = param.get('value')
        if key in ALL_CONSENTS:
            raw_values.append(value)
            if is_truthy(value) and key not in present:
                present.append(key)
        elif key == 'consentSettings':
            nested = value if isinstance(value, dict) else None
            if nested is None and 'map' in param:
                nested = {item.get('key'): item.get('value') for item in as_list(param['map'])
                          if isinstance(item, dict)}
            if nested:
                not_set = _read_block(nested, present, raw_values) or not_set
        elif key == 'consent_type':
            for consent in _consent_types(value if value is not None else param.get('list')):
                raw_values.append(consent)
                if consent in ALL_CONSENTS and consent not in present:
                    present.append(consent)

    if raw_values and all(v == NOT_CONFIGURED for v in raw_values):
        not_set = True

    return present, has_info, not_set


def evaluate_tag(tag: Tag) -> Dict:
    """Build the consent detail record for one marketing tag"""
    required = required_consents(tag)
    present, has_info, not_set = extract_tag_consent(tag)
    inferred = False

    # GA4 / Google tags honour analytics consent natively once consent is configured
    if has_info and not not_set and tag.type_lower in CONSENT_AWARE_TYPES \
            and 'analytics_storage' not in present:
        present = present + ['analytics_storage']
        inferred = True

    missing = [consent for consent in required if consent not in present]

    if not has_info:
        state, severity = NOT_CONFIGURED, 'critical'
    elif not_set:
        state, severity = NOT_CONFIGURED, 'major'
        missing = list(required)
    elif missing:
        state = 'missing'
        covered = [consent for consent in required if consent in present]
        severity = 'minor' if len(missing) == 1 and covered else 'major'
    else:
        state, severity = 'ok', 'ok'

    return {
        'id': tag.tag_id,
        'name': tag.name,
        'type': tag.type,
        'state': state,
        'severity': severity,
        'required': required,
        'present': present,
        'missing': missing,
        'paused': tag.paused,
        'inferred': inferred,
    }


def analyze_consent_mode(container: GTMContainer, config: QualityConfig = None) -> Dict:
    """Analyze Consent Mode coverage of the marketing tags in a container"""
    coverage = {
        'checked': 0,
        'ok': 0,
        'missing': 0,
        'not_configured': 0,
        'details': [],
        'score': 1.0,
    }
    issues = []
    absent = 0

    for tag in container.tags:
        if not is_marketing_tag(tag):
            continue
        detail = evaluate_tag(tag)
        coverage['checked'] += 1
        coverage['details'].append(detail)

        if detail['state'] == 'ok':
            coverage['ok'] += 1
            continue
        if detail['state'] == NOT_CONFIGURED:
            coverage['not_configured'] += 1
            if detail['severity'] == 'critical':
                absent += 1
        else:
            coverage['missing'] += 1

        if detail['severity'] == 'critical':
            reason = 'Marketing tag has no consent settings'
        else:
            reason = f"Missing consent categories: {', '.join(detail['missing'])}"
        issues.append(Issue(
            entity_id=tag.tag_id,
            entity_type='tag',
            name=tag.name,
            categories=['consent_missing'],
            severity=detail['severity'],
            reason=reason,
            suggestion=f"Require {', '.join(detail['required'])} in the tag's consent settings",
            meta={'missing': detail['missing'], 'state': detail['state']},
        ))

    if coverage['checked']:
        coverage['score'] = coverage['ok'] / coverage['checked']

    logger.debug('Consent mode: %d marketing tags checked, %d ok',
                 coverage['checked'], coverage['ok'])

    return {
        'consent_coverage': coverage,
        'issues': issues,
        'message': _consent_message(coverage, absent),
    }


def _consent_message(coverage: Dict, absent: int) -> Dict[str, str]:
    checked = coverage['checked']
    if checked == 0:
        return status_message('Consent Mode', 'ok', 'No marketing tags detected',
                              'Nothing to configure')

    if absent:
        status = 'critical'
    elif coverage['not_configured'] > checked / 2:
        status = 'major'
    elif coverage['missing'] or coverage['not_configured']:
        status = 'minor'
    else:
        status = 'ok'

    problems = coverage['missing'] + coverage['not_configured']
    summary = f'{problems} of {checked} marketing tags with incomplete consent mapping'
    cta = 'Review consent settings' if problems else 'Consent Mode configured correctly'
    return status_message('Consent Mode', status, summary, cta)
