#!/usr/bin/env python3
"""
GTM Tag Lifecycle and Naming Rules
Paused, obsolete, untriggered and badly named tags, plus the double
page_view check and UA -> GA4 migration suggestions.
"""

import logging
import re
from typing import Dict, List

from gtm_container import GTMContainer, Issue, Tag, is_truthy, status_message
from gtm_quality_config import QualityConfig
from gtm_taxonomy import is_builtin_trigger_id, is_ua_tag

logger = logging.getLogger(__name__)

CASE_PATTERN = re.compile(r'^_*[a-z][a-z0-9_]*$|^_*[a-z][a-zA-Z0-9]*$')
ALLOWED_CHARS_PATTERN = re.compile(r'^[A-Za-z0-9_-]*$')

GA4_CONFIG_TYPES = ('gaawc', 'ga4_config', 'gtag', 'googtag')
MANUAL_PAGEVIEW_SNIPPETS = ("gtag('event','page_view'", 'gtag("event","page_view"',
                            "gtag('event', 'page_view'", 'gtag("event", "page_view"')


def naming_violations(name: str, config: QualityConfig) -> List[str]:
    """Return the naming rules a name fails (empty list means clean)"""
    failed = []
    if not re.match(r'^[A-Za-z_]', name):
        failed.append('must start with a letter or underscore')
    if re.search(r'\s', name):
        failed.append('contains whitespace')
    if len(name) < config.name_min_length:
        failed.append(f'shorter than {config.name_min_length} characters')
    if len(name) > config.name_max_length:
        failed.append(f'longer than {config.name_max_length} characters')
    if not CASE_PATTERN.match(name):
        failed.append('not snake_case or camelCase')
    if not ALLOWED_CHARS_PATTERN.match(name):
        failed.append('contains characters outside [A-Za-z0-9_-]')
    return failed


def suggest_snake_case(name: str) -> str:
    """Generate a snake_case name, e.g. 'GA4 - Page View' -> 'ga4_page_view'"""
    # Split camelCase humps before lowering
    text = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', name)
    text = re.sub(r'[^A-Za-z0-9]+', '_', text).strip('_').lower()
    text = re.sub(r'_+', '_', text)
    if not text:
        text = 'tag'
    if not text[0].isalpha():
        text = f'tag_{text}'
    if len(text) < 3:
        text = f'{text}_tag'
    return text[:50].rstrip('_')


def _is_ga4_config_sending_pageview(tag: Tag) -> bool:
    tag_type = tag.type_lower
    if tag_type in GA4_CONFIG_TYPES:
        if tag_type == 'gtag' and tag.html:
            if "gtag('config'" not in tag.html and 'gtag("config"' not in tag.html:
                return False
    elif not ((tag.param('send_page_view') is not None or tag.param('measurement_id') is not None)
              and tag.param('eventName') is None):
        return False

    # send_page_view defaults to true when absent
    send_page_view = tag.param('send_page_view')
    if send_page_view is None:
        send_page_view = tag.param('sendPageView')
    return send_page_view is None or is_truthy(send_page_view)


def _is_manual_pageview(tag: Tag) -> bool:
    tag_type = tag.type_lower
    if tag_type in ('gaawe', 'ga4_event') and tag.param('eventName') == 'page_view':
        return True
    if tag_type == 'html' and tag.html:
        return any(snippet in tag.html for snippet in MANUAL_PAGEVIEW_SNIPPETS)
    return False


def detect_double_pageview(container: GTMContainer) -> Dict:
    """GA4 config tags that still send page_view overlapping a manual page_view"""
    config_tags = [tag for tag in container.tags if _is_ga4_config_sending_pageview(tag)]
    manual_tags = [tag for tag in container.tags if _is_manual_pageview(tag)]
    history_ids = {t.trigger_id for t in container.triggers if t.family == 'HISTORY_CHANGE'}

    shared_triggers = []
    flagged_manual = []
    has_history_change = False

    for manual in manual_tags:
        flagged = False
        for config_tag in config_tags:
            common = [tid for tid in config_tag.firing_trigger_ids if tid in manual.firing_trigger_ids]
            for tid in common:
                if tid not in shared_triggers:
                    shared_triggers.append(tid)
            if common:
                flagged = True
        if config_tags and any(tid in history_ids for tid in manual.firing_trigger_ids):
            has_history_change = True
            flagged = True
        if flagged:
            flagged_manual.append(manual)

    detected = bool(flagged_manual)
    return {
        'status': 'critical' if detected else 'ok',
        'detected': detected,
        'config_tags': [{'id': t.tag_id, 'name': t.name, 'type': t.type,
                         'firing_triggers': list(t.firing_trigger_ids)} for t in config_tags],
        'manual_page_view_tags': [{'id': t.tag_id, 'name': t.name, 'type': t.type,
                                   'firing_triggers': list(t.firing_trigger_ids)} for t in manual_tags],
        'flagged_tag_ids': [t.tag_id for t in flagged_manual],
        'shared_triggers': shared_triggers,
        'has_history_change': has_history_change,
        'action': ('Set send_page_view to false on the GA4 configuration and send page_view '
                   'from a single place (History Change for SPAs)') if detected
                  else 'No double page_view detected',
    }


def _tag_issue(tag: Tag, category: str, severity: str, reason: str, suggestion: str = None,
               meta: Dict = None) -> Issue:
    return Issue(
        entity_id=tag.tag_id,
        entity_type='tag',
        name=tag.name,
        categories=[category],
        severity=severity,
        reason=reason,
        suggestion=suggestion,
        meta=meta or {},
    )


def analyze_tag_rules(container: GTMContainer, config: QualityConfig = None) -> Dict:
    """Run lifecycle and naming rules on every tag"""
    config = config or QualityConfig()
    known_triggers = {trigger.trigger_id for trigger in container.triggers}

    stats = {
        'total': len(container.tags),
        'paused': 0,
        'ua_obsolete': 0,
        'naming': 0,
        'no_trigger': 0,
        'dangling_trigger': 0,
        'clean': 0,
    }
    issues = []
    double_page_view = detect_double_pageview(container)
    double_page_view_ids = set(double_page_view['flagged_tag_ids'])

    for tag in container.tags:
        tag_issues = []

        if tag.paused:
            stats['paused'] += 1
            tag_issues.append(_tag_issue(
                tag, 'paused', 'minor', 'Tag is paused',
                'Remove the tag if it is no longer needed'))

        if is_ua_tag(tag):
            stats['ua_obsolete'] += 1
            tag_issues.append(_tag_issue(
                tag, 'ua_obsolete', 'major',
                'Universal Analytics stopped processing data; this tag is obsolete',
                'Migrate the tag to a GA4 event or Google tag'))

        violations = naming_violations(tag.name, config)
        if violations:
            stats['naming'] += 1
            tag_issues.append(_tag_issue(
                tag, 'naming', 'minor',
                f"Name '{tag.name}' {'; '.join(violations)}",
                suggest_snake_case(tag.name),
                {'violations': violations}))

        if not tag.firing_trigger_ids:
            stats['no_trigger'] += 1
            tag_issues.append(_tag_issue(
                tag, 'no_trigger', 'major', 'Tag has no firing trigger and never fires',
                'Attach a firing trigger or delete the tag'))

        dangling = [tid for tid in tag.firing_trigger_ids + tag.blocking_trigger_ids
                    if tid not in known_triggers and not is_builtin_trigger_id(tid)]
        if dangling:
            stats['dangling_trigger'] += 1
            tag_issues.append(_tag_issue(
                tag, 'dangling_trigger', 'major',
                f"References trigger id(s) not in the container: {', '.join(dangling)}",
                'Remove or replace the missing trigger references',
                {'trigger_ids': dangling}))

        if tag.tag_id in double_page_view_ids:
            tag_issues.append(_tag_issue(
                tag, 'double_pageview', 'critical',
                'Manual page_view fires alongside a GA4 configuration that already sends page_view',
                double_page_view['action'],
                {'shared_triggers': double_page_view['shared_triggers']}))

        if not tag_issues:
            stats['clean'] += 1
        issues.extend(tag_issues)

    trigger_naming = entity_naming_issues(
        'trigger', [(t.trigger_id, t.name) for t in container.triggers], config)
    variable_naming = entity_naming_issues(
        'variable', [(v.variable_id, v.name) for v in container.variables], config)
    stats['naming_triggers'] = len(trigger_naming)
    stats['naming_variables'] = len(variable_naming)
    issues.extend(trigger_naming + variable_naming)

    bad_names = {
        'tags': [issue.name for issue in issues if issue.entity_type == 'tag' and issue.categories == ['naming']],
        'triggers': [issue.name for issue in trigger_naming],
        'variables': [issue.name for issue in variable_naming],
    }

    logger.debug('Tag rules: %d tags, %d clean', stats['total'], stats['clean'])

    return {
        'tag_rules': {
            'stats': stats,
            'double_page_view': double_page_view,
            'bad_names': bad_names,
            'issues': [issue.to_dict() for issue in issues],
        },
        'issues': issues,
        'message': _tag_message(stats, double_page_view['detected']),
    }


def entity_naming_issues(entity_type: str, entities: List, config: QualityConfig) -> List[Issue]:
    """Naming issues for (id, name) pairs of triggers or variables"""
    issues = []
    for entity_id, name in entities:
        violations = naming_violations(name, config)
        if not violations:
            continue
        issues.append(Issue(
            entity_id=entity_id,
            entity_type=entity_type,
            name=name,
            categories=['naming'],
            severity='minor',
            reason=f"Name '{name}' {'; '.join(violations)}",
            suggestion=suggest_snake_case(name),
            meta={'violations': violations},
        ))
    return issues


def naming_total(stats: Dict) -> int:
    return stats['naming'] + stats.get('naming_triggers', 0) + stats.get('naming_variables', 0)


def _tag_message(stats: Dict, double_page_view: bool) -> Dict[str, str]:
    problems = stats['total'] - stats['clean']
    if double_page_view:
        status = 'critical'
    elif stats['ua_obsolete'] or stats['no_trigger'] or stats['dangling_trigger']:
        status = 'major'
    elif problems or naming_total(stats):
        status = 'minor'
    else:
        status = 'ok'

    if stats['total'] == 0:
        summary = 'No tags in the container'
    else:
        summary = f"{problems} of {stats['total']} tags have lifecycle or naming issues"
    other_names = stats.get('naming_triggers', 0) + stats.get('naming_variables', 0)
    if other_names:
        summary += f', {other_names} trigger/variable names break the naming rules'
    cta = 'Review tags' if status != 'ok' else 'Tags look healthy'
    return status_message('Tags', status, summary, cta)


def build_migration_suggestions(container: GTMContainer) -> List[Dict]:
    """Suggest a GA4 replacement for every Universal Analytics tag"""
    suggestions = []
    for tag in container.tags:
        if not is_ua_tag(tag):
            continue
        track_type = tag.param('trackType')
        track_type = track_type.upper() if isinstance(track_type, str) else ''
        is_pageview = track_type == 'TRACK_PAGEVIEW'
        suggestions.append({
            'ua_tag_id': tag.tag_id,
            'ua_tag_name': tag.name,
            'track_type': track_type,
            'suggested_ga4_name': (f'GA4 - Configuration (from {tag.name})' if is_pageview
                                   else f'GA4 Event - {tag.name}'),
            'ga4_type': 'googtag' if is_pageview else 'gaawe',
        })
    return suggestions
