#!/usr/bin/env python3
"""
GTM Quality Report
Console report, issue tables and status metadata for presenting a
container analysis.
"""

from typing import Dict, List

import pandas as pd

from gtm_container import SEVERITY_RANK
from gtm_html_security import summarize_findings

# Color scheme
COLORS = {
    'success': '#2ca02c',
    'info': '#17a2b8',
    'warning': '#ff7f0e',
    'danger': '#d62728',
    'dark': '#343a40',
}

# Presentation metadata per message status
STATUS_META = {
    'critical': {'icon': '🚨', 'label': 'Critical', 'priority': 'Critical', 'color': COLORS['danger']},
    'major': {'icon': '⚠️', 'label': 'Major', 'priority': 'High', 'color': COLORS['warning']},
    'minor': {'icon': 'ℹ️', 'label': 'Minor', 'priority': 'Medium', 'color': COLORS['info']},
    'ok': {'icon': '✅', 'label': 'OK', 'priority': 'None', 'color': COLORS['success']},
}

ISSUE_COLUMNS = ['entity_type', 'entity_id', 'name', 'category', 'severity', 'reason', 'suggestion']

SECTION_TITLES = [
    ('tag_rules', 'TAGS'),
    ('consent_mode', 'CONSENT MODE'),
    ('trigger_quality', 'TRIGGER QUALITY'),
    ('variable_quality', 'VARIABLE QUALITY'),
    ('html_security', 'CUSTOM HTML SECURITY'),
]


def status_meta(status: str) -> Dict[str, str]:
    return STATUS_META.get(status, STATUS_META['ok'])


def score_color(total: float) -> str:
    if total >= 80:
        return COLORS['success']
    if total >= 60:
        return COLORS['warning']
    return COLORS['danger']


def issues_frame(report: Dict) -> pd.DataFrame:
    """One row per issue and category, most severe first"""
    rows = []
    for entity_id, issues in report.get('issue_index', {}).get('by_id', {}).items():
        for issue in issues:
            for category in issue['categories']:
                rows.append({
                    'entity_type': issue['entity_type'],
                    'entity_id': entity_id,
                    'name': issue['name'],
                    'category': category,
                    'severity': issue['severity'],
                    'reason': issue['reason'],
                    'suggestion': issue.get('suggestion') or '',
                })

    df = pd.DataFrame(rows, columns=ISSUE_COLUMNS)
    if df.empty:
        return df

    df['rank'] = df['severity'].map(SEVERITY_RANK).fillna(0)
    df = df.sort_values(['rank', 'category', 'entity_type', 'entity_id'],
                        ascending=[False, True, True, True], kind='mergesort')
    return df.drop(columns='rank').reset_index(drop=True)


def category_summary_frame(report: Dict) -> pd.DataFrame:
    """Issue counts per category and severity"""
    df = issues_frame(report)
    if df.empty:
        return pd.DataFrame(columns=['category', 'critical', 'major', 'minor', 'total'])

    summary = pd.crosstab(df['category'], df['severity'])
    for severity in ('critical', 'major', 'minor'):
        if severity not in summary.columns:
            summary[severity] = 0
    summary = summary[['critical', 'major', 'minor']].copy()
    summary['total'] = summary.sum(axis=1)
    return summary.sort_values(['total'], ascending=False, kind='mergesort').reset_index()


def breakdown_frame(report: Dict) -> pd.DataFrame:
    components = report.get('quality_score', {}).get('breakdown', [])
    return pd.DataFrame(components, columns=['label', 'value', 'weight', 'available', 'contribution'])


def print_quality_report(report: Dict):
    """Print a formatted report"""
    score = report['quality_score']
    print("=" * 80)
    print("GTM CONTAINER QUALITY REPORT")
    print("=" * 80)
    print()

    counts = report.get('counts', {})
    print("SUMMARY:")
    print(f"  Quality Score: {score['total']}/100")
    print(f"  Total Tags: {counts.get('tags', 0)} ({counts.get('paused_tags', 0)} paused)")
    print(f"  Total Triggers: {counts.get('triggers', 0)}")
    print(f"  Total Variables: {counts.get('variables', 0)}")
    print(f"  Issues: {counts.get('issues', 0)}")
    if report.get('unavailable'):
        print(f"  Unavailable Analyses: {', '.join(report['unavailable'])}")
    for warning in report.get('warnings', []):
        print(f"  WARNING: {warning}")
    print()

    print("-" * 80)
    print("SCORE BREAKDOWN:")
    print("-" * 80)
    df = breakdown_frame(report)
    if not df.empty:
        print(df.to_string(index=False))
    print()

    for key, title in SECTION_TITLES:
        result = report.get(key)
        print("-" * 80)
        print(f"{title}:")
        print("-" * 80)
        if result is None:
            print("  Analysis unavailable (see log for details)")
            print()
            continue
        message = result['message']
        meta = status_meta(message['status'])
        print(f"  {meta['icon']} {meta['label']}: {message['summary']}")
        print(f"  -> {message['cta']}")
        if key == 'html_security':
            security = result['html_security']
            if security['third_parties']:
                print(f"  Third parties: {', '.join(security['third_parties'])}")
            for finding_type, count in summarize_findings(security['details']):
                print(f"    - {finding_type}: {count}")
        print()

    if report.get('action_plan'):
        print("-" * 80)
        print("ACTION PLAN:")
        print("-" * 80)
        for i, action in enumerate(report['action_plan'], 1):
            print(f"  {i}. {action['action']} ({action['count']}) - {action['description']}")
        print()

    if report.get('migration_suggestions'):
        print("-" * 80)
        print("UA -> GA4 MIGRATION:")
        print("-" * 80)
        for suggestion in report['migration_suggestions']:
            print(f"  {suggestion['ua_tag_name']} -> {suggestion['suggested_ga4_name']} "
                  f"({suggestion['ga4_type']})")
        print()

    summary = category_summary_frame(report)
    print("-" * 80)
    print("ISSUES BY CATEGORY:")
    print("-" * 80)
    if summary.empty:
        print("  No issues found")
    else:
        print(summary.to_string(index=False))
    print()


def write_issues_csv(report: Dict, output_file: str) -> List[str]:
    """Save the issue table as CSV and return its columns"""
    df = issues_frame(report)
    df.to_csv(output_file, index=False, encoding='utf-8')
    return list(df.columns)
