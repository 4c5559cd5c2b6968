#!/usr/bin/env python3
"""
GTM Trigger Quality
Scores trigger configuration: All Pages overuse, blocking exceptions,
firing timing, SPA support and trigger hygiene.
"""

import json
import logging
from collections import OrderedDict
from typing import Dict, List

from gtm_container import (GTMContainer, Issue, Trigger, status_from_score, status_message,
                           weighted_score)
from gtm_quality_config import QualityConfig
from gtm_taxonomy import is_ad_platform_tag, is_core_tag, is_ux_tag
from gtm_usage_graph import UsageGraph, build_usage_graph

logger = logging.getLogger(__name__)

MATCH_ALL_VALUES = (True, 'true', '.*', '*')
PAGE_LOAD_FAMILIES = ('PAGEVIEW', 'DOM_READY', 'WINDOW_LOADED')


def _condition_value(condition):
    if not isinstance(condition, dict):
        return condition
    if 'value' in condition:
        return condition['value']
    # GTM conditions keep the compared value in the arg1 parameter
    for param in condition.get('parameter') or []:
        if isinstance(param, dict) and param.get('key') == 'arg1':
            return param.get('value')
    return None


def is_match_all(conditions) -> bool:
    """No conditions, or a single condition that matches everything"""
    if not conditions:
        return True
    if len(conditions) == 1:
        return _condition_value(conditions[0]) in MATCH_ALL_VALUES
    return False


def is_all_pages_unfiltered(trigger: Trigger) -> bool:
    return trigger.family == 'PAGEVIEW' and is_match_all(trigger.all_conditions)


def _normalize_conditions(conditions) -> List[str]:
    return sorted(json.dumps(condition, sort_keys=True, default=str) for condition in conditions)


def trigger_signature(trigger: Trigger) -> str:
    """Type plus order-insensitive filter conditions"""
    return json.dumps({
        'type': trigger.family,
        'filter': _normalize_conditions(trigger.filters),
        'autoEventFilter': _normalize_conditions(trigger.auto_event_filters),
        'customEventFilter': _normalize_conditions(trigger.custom_event_filters),
    }, sort_keys=True)


def evaluate_timing(trigger: Trigger, used_by_tags) -> str:
    """Return 'good', 'ok' or 'bad' from the preferred timing of the trigger type"""
    if trigger.family == 'PAGEVIEW':
        return 'bad' if any(not is_core_tag(tag) for tag in used_by_tags) else 'ok'
    if trigger.family == 'WINDOW_LOADED':
        return 'bad' if any(not is_ux_tag(tag) for tag in used_by_tags) else 'ok'
    if trigger.family == 'DOM_READY':
        return 'good'
    return 'ok'


def find_duplicate_groups(triggers) -> List[Dict]:
    """Group triggers with identical signatures, keeping container order"""
    groups = OrderedDict()
    for trigger in triggers:
        groups.setdefault(trigger_signature(trigger), []).append(trigger.trigger_id)
    return [{'ids': ids, 'reason': 'same type and conditions'}
            for ids in groups.values() if len(ids) > 1]


def _trigger_issue(trigger: Trigger, category: str, severity: str, reason: str,
                   suggestion: str, meta: Dict = None) -> Issue:
    return Issue(
        entity_id=trigger.trigger_id,
        entity_type='trigger',
        name=trigger.name,
        categories=[category],
        severity=severity,
        reason=reason,
        suggestion=suggestion,
        meta=meta or {},
    )


def analyze_trigger_quality(container: GTMContainer, usage: UsageGraph = None,
                            config: QualityConfig = None) -> Dict:
    """Analyze trigger quality for a container"""
    config = config or QualityConfig()
    usage = usage or build_usage_graph(container, config)
    triggers = container.triggers
    trigger_by_id = container.trigger_by_id()

    firing_users = {trigger.trigger_id: [] for trigger in triggers}
    inappropriate_blocking = OrderedDict()
    blocking_on_marketing = set()

    for tag in container.tags:
        for trigger_id in tag.firing_trigger_ids:
            if trigger_id in firing_users:
                firing_users[trigger_id].append(tag)
        if not tag.blocking_trigger_ids or not is_ad_platform_tag(tag):
            continue
        for trigger_id in tag.blocking_trigger_ids:
            blocking_on_marketing.add(trigger_id)
            blocker = trigger_by_id.get(trigger_id)
            if trigger_id in tag.firing_trigger_ids:
                reason = 'also fires the same tag'
            elif blocker is not None and blocker.family in PAGE_LOAD_FAMILIES \
                    and is_match_all(blocker.all_conditions):
                reason = 'blocks every page load'
            else:
                continue
            inappropriate_blocking.setdefault(trigger_id, []).append((tag.tag_id, reason))

    duplicate_groups = find_duplicate_groups(triggers)
    excess_duplicates = {}
    for group in duplicate_groups:
        for trigger_id in group['ids'][1:]:
            excess_duplicates[trigger_id] = group['ids'][0]

    stats = {
        'total_triggers': len(triggers),
        'unused_triggers': 0,
        'all_pages_unfiltered': 0,
        'duplicates': len(excess_duplicates),
        'duplicate_groups': duplicate_groups,
        'history_change_present': any(t.family == 'HISTORY_CHANGE' for t in triggers),
        'with_blocking_on_marketing': len(blocking_on_marketing),
    }
    issues = []
    bad_timing = 0

    for trigger in triggers:
        used_by = firing_users[trigger.trigger_id]

        if is_all_pages_unfiltered(trigger):
            stats['all_pages_unfiltered'] += 1
            non_core = [tag.tag_id for tag in used_by if not is_core_tag(tag)]
            issues.append(_trigger_issue(
                trigger, 'trigger_all_pages', 'major' if non_core else 'minor',
                'All Pages trigger without filters' + (' used by non-core tags' if non_core else ''),
                'Add a hostname/path filter or move the tags to DOM Ready',
                {'used_by_tag_ids': non_core}))

        if evaluate_timing(trigger, used_by) == 'bad':
            bad_timing += 1
            issues.append(_trigger_issue(
                trigger, 'trigger_timing', 'minor',
                f'{trigger.family} timing is not optimal for the tags it fires',
                'Consider DOM Ready, or check the tags really need this timing'))

        if trigger.trigger_id not in usage.referenced_trigger_ids:
            stats['unused_triggers'] += 1
            issues.append(_trigger_issue(
                trigger, 'trigger_unused', 'minor', 'Trigger is not used by any tag',
                'Remove it if it is no longer needed'))

        if trigger.trigger_id in excess_duplicates:
            original = excess_duplicates[trigger.trigger_id]
            issues.append(_trigger_issue(
                trigger, 'trigger_duplicate', 'minor',
                f'Same type and conditions as trigger {original}',
                'Merge the duplicates into a single trigger',
                {'duplicate_of': original}))

        if trigger.trigger_id in inappropriate_blocking:
            blocked = inappropriate_blocking[trigger.trigger_id]
            issues.append(_trigger_issue(
                trigger, 'trigger_blocking', 'major',
                'Blocking trigger on marketing tags ' + '; '.join(
                    f'{tag_id}: {reason}' for tag_id, reason in blocked),
                'Use a blocking trigger scoped to the pages or consent state to exclude',
                {'tag_ids': [tag_id for tag_id, _ in blocked]}))

    total = max(len(triggers), 1)
    breakdown = {
        'specificity': max(0.0, 1 - stats['all_pages_unfiltered'] / total),
        'blocking': max(0.0, 1 - len(inappropriate_blocking) / total),
        'timing': max(0.0, 1 - bad_timing / total),
        'spa': 1.0 if not triggers or stats['history_change_present'] else config.spa_penalty_score,
        'hygiene': max(0.0, 1 - (stats['unused_triggers'] + stats['duplicates']) / total),
    }
    score = weighted_score(breakdown, config.trigger_weights)

    logger.debug('Trigger quality: %d triggers, score %.3f', len(triggers), score)

    return {
        'trigger_quality': {
            'score': score,
            'breakdown': breakdown,
            'stats': stats,
            'issues': [issue.to_dict() for issue in issues],
        },
        'issues': issues,
        'message': _trigger_message(stats, score, config),
    }


def _trigger_message(stats: Dict, score: float, config: QualityConfig) -> Dict[str, str]:
    status = status_from_score(score, config.status_thresholds)
    if stats['total_triggers'] == 0:
        summary = 'No triggers in the container'
    else:
        summary = (f"{stats['all_pages_unfiltered']} unfiltered All Pages, "
                   f"{stats['unused_triggers']} unused, {stats['duplicates']} duplicate triggers")
    cta = 'Optimize triggers' if status != 'ok' else 'Trigger configuration looks good'
    return status_message('Trigger quality', status, summary, cta)
