#!/usr/bin/env python3
"""
GTM Variable Quality
Checks Data Layer fallbacks, lookup defaults, regex tables, CSS selectors,
Custom JavaScript and variable hygiene (unused / duplicate names).
"""

import logging
import re
from collections import OrderedDict
from typing import Dict, List, Optional

import regex

from gtm_container import (GTMContainer, Issue, Variable, as_list, status_from_score,
                           status_message, weighted_score)
from gtm_html_security import DOCUMENT_WRITE, GLOBAL_EVAL, NEW_FUNCTION
from gtm_quality_config import QualityConfig
from gtm_usage_graph import UsageGraph, build_usage_graph

logger = logging.getLogger(__name__)

# Generated / hashed class names from CSS-in-JS and CSS modules
FRAGILE_SELECTOR_PATTERNS = [
    re.compile(r'\.css-[a-z0-9]{5,}', re.I),
    re.compile(r'\.sc-[a-z0-9]{4,}', re.I),
    re.compile(r'\.jss\d+'),
    re.compile(r'\.Mui[A-Za-z]+-[A-Za-z0-9-]+'),
    re.compile(r'\.chakra-[a-z]*[0-9][a-z0-9]{5,}', re.I),
    re.compile(r'\._(?=[A-Za-z0-9_-]*\d)[A-Za-z0-9_-]{5,}'),
]

UNSAFE_JS_PATTERNS = [
    ('eval(', GLOBAL_EVAL),
    ('document.write(', DOCUMENT_WRITE),
    ('new Function(', NEW_FUNCTION),
]

JS_NAMED_GROUP = re.compile(r'\(\?<(?![=!])')
JS_NAMED_BACKREF = re.compile(r'\\k<([A-Za-z_][A-Za-z0-9_]*)>')
# One escape at a time, so an escaped backslash is consumed as a pair
JS_ESCAPE = re.compile(r'\\(c[A-Za-z]|.)', re.S)
# Letter escapes both dialects read the same way
SHARED_ESCAPE_LETTERS = set('bBdDfnrsStvwWux')

STAT_KEYS = ('dlv_missing_fallback', 'lookup_without_default', 'regex_malformed',
             'css_fragile_selectors', 'js_unsafe_code')


def _translate_escape(match) -> str:
    token = match.group(1)
    if len(token) == 2:
        # \cJ control escape
        return '\\x%02x' % (ord(token[1]) % 32)
    if 'a' <= token.lower() <= 'z' and token not in SHARED_ESCAPE_LETTERS:
        # JavaScript identity escape: \e is just 'e'
        return token
    return match.group(0)


def translate_js_regex(pattern: str) -> str:
    """Rewrite JavaScript named groups, control and identity escapes into Python syntax"""
    pattern = JS_NAMED_GROUP.sub('(?P<', pattern)
    pattern = JS_NAMED_BACKREF.sub(r'(?P=\1)', pattern)
    return JS_ESCAPE.sub(_translate_escape, pattern)


def regex_error(pattern: str) -> Optional[str]:
    """
    Return the compile error message for a pattern, or None if it compiles.

    Patterns are compiled with the regex package, which accepts the
    variable-width look-behind JavaScript allows.
    """
    try:
        regex.compile(translate_js_regex(pattern))
    except regex.error as e:
        return str(e)
    return None


def table_entries(variable: Variable, key: str) -> List[str]:
    """Values stored under `key` in each row of a lookup/regex table"""
    entries = []
    for row in as_list(variable.param('map')):
        if not isinstance(row, dict):
            continue
        for cell in as_list(row.get('map')):
            if isinstance(cell, dict) and cell.get('key') == key and isinstance(cell.get('value'), str):
                entries.append(cell['value'])
    return entries


def regex_patterns(variable: Variable) -> List[str]:
    patterns = []
    pattern = variable.param('pattern')
    if isinstance(pattern, str) and pattern:
        patterns.append(pattern)
    patterns.extend(table_entries(variable, 'key'))
    return patterns


def has_lookup_default(variable: Variable) -> bool:
    if variable.param('defaultTable'):
        return True
    default = variable.param('defaultValue')
    return default is not None and default != ''


def css_selector(variable: Variable) -> str:
    for key in ('selector', 'elementSelector', 'cssSelector'):
        value = variable.param(key)
        if isinstance(value, str) and value:
            return value
    return ''


def check_variable(variable: Variable) -> List[Dict]:
    """Kind-specific checks, returned as [{stat, reason, suggestion, meta}]"""
    findings = []

    if variable.kind == 'dlv':
        default = variable.param('defaultValue')
        if default is None or default == '':
            findings.append({
                'stat': 'dlv_missing_fallback',
                'reason': 'Data Layer Variable has no default value',
                'suggestion': "Set a default value such as '' or 'undefined'",
            })

    elif variable.kind == 'lookup':
        if not has_lookup_default(variable):
            findings.append({
                'stat': 'lookup_without_default',
                'reason': 'Lookup Table has no default value, unmatched input resolves to undefined',
                'suggestion': 'Set a default value for unmatched input',
            })

    elif variable.kind == 'regex':
        for pattern in regex_patterns(variable):
            error = regex_error(pattern)
            if error:
                findings.append({
                    'stat': 'regex_malformed',
                    'reason': f"Regex '{pattern}' does not compile: {error}",
                    'suggestion': 'Fix the regular expression syntax',
                    'meta': {'pattern': pattern},
                })
                break

    elif variable.kind == 'css':
        selector = css_selector(variable)
        if selector and any(p.search(selector) for p in FRAGILE_SELECTOR_PATTERNS):
            findings.append({
                'stat': 'css_fragile_selectors',
                'reason': f"Selector '{selector}' relies on generated class names",
                'suggestion': "Use a stable attribute such as [data-cta='buy']",
                'meta': {'selector': selector},
            })

    elif variable.kind == 'jsm':
        code = variable.param('javascript')
        if isinstance(code, str):
            matched = [label for label, pattern in UNSAFE_JS_PATTERNS if pattern.search(code)]
            if matched:
                findings.append({
                    'stat': 'js_unsafe_code',
                    'reason': f"Custom JavaScript uses {', '.join(matched)}",
                    'suggestion': 'Remove eval, document.write and new Function',
                    'meta': {'patterns': matched},
                })

    return findings


def _ratio_score(flagged: int, count: int) -> float:
    if count == 0:
        return 1.0
    return max(0.0, 1 - flagged / count)


def analyze_variable_quality(container: GTMContainer, usage: UsageGraph = None,
                             config: QualityConfig = None) -> Dict:
    """Analyze variable quality for a container"""
    config = config or QualityConfig()
    usage = usage or build_usage_graph(container, config)
    severities = config.variable_severities
    variables = container.variables

    # Case-insensitive name collisions, first occurrence is the original
    by_lower_name = OrderedDict()
    for variable in variables:
        by_lower_name.setdefault(variable.name.lower(), []).append(variable.variable_id)
    duplicate_of = {}
    for ids in by_lower_name.values():
        for variable_id in ids[1:]:
            duplicate_of[variable_id] = ids[0]

    stats = {
        'total': len(variables),
        'unused': 0,
        'duplicates': len(duplicate_of),
    }
    stats.update({key: 0 for key in STAT_KEYS})
    kind_counts = {}
    issues = []

    def add_issue(variable, category, reason, suggestion, meta=None):
        issues.append(Issue(
            entity_id=variable.variable_id,
            entity_type='variable',
            name=variable.name,
            categories=[category],
            severity=severities.get(category, 'minor'),
            reason=reason,
            suggestion=suggestion,
            meta=meta or {},
        ))

    for variable in variables:
        kind_counts[variable.kind] = kind_counts.get(variable.kind, 0) + 1

        for finding in check_variable(variable):
            stats[finding['stat']] += 1
            add_issue(variable, finding['stat'], finding['reason'], finding['suggestion'],
                      finding.get('meta'))

        if variable.name not in usage.referenced_names:
            stats['unused'] += 1
            add_issue(variable, 'variable_unused', 'Variable is not referenced anywhere',
                      'Delete the variable if it is no longer needed')

        if variable.variable_id in duplicate_of:
            add_issue(variable, 'variable_duplicate',
                      f'Name collides (case-insensitive) with variable {duplicate_of[variable.variable_id]}',
                      'Rename or merge the duplicate variables',
                      {'duplicate_of': duplicate_of[variable.variable_id]})

    breakdown = {
        'dlv': _ratio_score(stats['dlv_missing_fallback'], kind_counts.get('dlv', 0)),
        'lookup': _ratio_score(stats['lookup_without_default'], kind_counts.get('lookup', 0)),
        'hygiene': _ratio_score(stats['unused'] + stats['duplicates'], len(variables)),
        'selectors': _ratio_score(stats['css_fragile_selectors'], kind_counts.get('css', 0)),
        'js': _ratio_score(stats['js_unsafe_code'], kind_counts.get('jsm', 0)),
        'regex': _ratio_score(stats['regex_malformed'], kind_counts.get('regex', 0)),
    }
    score = weighted_score(breakdown, config.variable_weights)

    logger.debug('Variable quality: %d variables, score %.3f', len(variables), score)

    return {
        'variable_quality': {
            'score': score,
            'breakdown': breakdown,
            'stats': stats,
            'kind_counts': kind_counts,
            'issues': [issue.to_dict() for issue in issues],
        },
        'issues': issues,
        'message': _variable_message(stats, score, config),
    }


def _variable_message(stats: Dict, score: float, config: QualityConfig) -> Dict[str, str]:
    status = status_from_score(score, config.status_thresholds)
    flagged = sum(stats[key] for key in STAT_KEYS)
    if stats['total'] == 0:
        summary = 'No variables in the container'
    else:
        summary = (f"{flagged} configuration problems, {stats['unused']} unused and "
                   f"{stats['duplicates']} duplicate variables out of {stats['total']}")
    cta = 'Fix variables' if status != 'ok' else 'Variable configuration looks good'
    return status_message('Variable quality', status, summary, cta)
