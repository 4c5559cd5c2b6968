#!/usr/bin/env python3
"""
GTM Container Quality Engine
Runs every analyzer over one container export and assembles the score,
issue index and action plan. A failing analyzer is logged and its
dimension left out of the score; the rest of the analysis still runs.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from gtm_consent_mode import analyze_consent_mode
from gtm_container import ContainerFormatError, GTMContainer, Issue
from gtm_html_security import analyze_html_security
from gtm_issue_index import IssueIndex, build_issue_index
from gtm_quality_config import QualityConfig
from gtm_quality_score import QualityScore, aggregate_quality_score, build_action_plan, cleanliness
from gtm_tag_rules import analyze_tag_rules, build_migration_suggestions, naming_total
from gtm_taxonomy import get_tag_type_name
from gtm_trigger_quality import analyze_trigger_quality
from gtm_usage_graph import UsageGraph, build_usage_graph, unresolved_reference_issues
from gtm_variable_quality import STAT_KEYS, analyze_variable_quality

logger = logging.getLogger(__name__)

ANALYZER_KEYS = ('tag_rules', 'consent_mode', 'trigger_quality', 'variable_quality', 'html_security')

TAG_FAMILIES = {'ua': 'ua', 'gaawe': 'gaawe', 'googtag': 'googtag', 'gaawc': 'googtag', 'html': 'html'}


@dataclass
class ContainerAnalysis:
    quality_score: QualityScore
    results: Dict[str, Optional[Dict[str, Any]]]
    issue_index: IssueIndex
    action_plan: List[Dict]
    counts: Dict[str, int]
    distribution: Dict[str, Dict[str, int]]
    migration_suggestions: List[Dict]
    unavailable: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    usage: Optional[UsageGraph] = None

    @property
    def issues(self) -> List[Issue]:
        return self.issue_index.all_issues()

    def to_dict(self) -> Dict[str, Any]:
        data = {'quality_score': self.quality_score.to_dict()}
        for key in ANALYZER_KEYS:
            data[key] = self.results.get(key)
        data.update({
            'issue_index': self.issue_index.to_dict(),
            'action_plan': list(self.action_plan),
            'counts': dict(self.counts),
            'distribution': {key: dict(value) for key, value in self.distribution.items()},
            'migration_suggestions': list(self.migration_suggestions),
            'unavailable': list(self.unavailable),
            'warnings': list(self.warnings),
        })
        return data


class ContainerQualityEngine:
    """Stateless analysis service; holds only its configuration"""

    def __init__(self, config: QualityConfig = None):
        self.config = config or QualityConfig()

    def analyze(self, data) -> ContainerAnalysis:
        warnings = []
        try:
            container = GTMContainer.from_export(data)
        except ContainerFormatError as e:
            logger.warning('Cannot read container: %s', e)
            warnings.append(f'Input is not a GTM container ({e}); analyzed as empty')
            container = GTMContainer()

        logger.info('Analyzing container: %d tags, %d triggers, %d variables',
                    len(container.tags), len(container.triggers), len(container.variables))

        unavailable = []
        usage = self._run('usage_graph', unavailable, build_usage_graph, container, self.config)

        analyzers = [
            ('tag_rules', lambda: analyze_tag_rules(container, self.config)),
            ('consent_mode', lambda: analyze_consent_mode(container, self.config)),
            ('trigger_quality', lambda: analyze_trigger_quality(container, usage, self.config)),
            ('variable_quality', lambda: analyze_variable_quality(container, usage, self.config)),
            ('html_security', lambda: analyze_html_security(container, self.config)),
        ]

        results = {}
        all_issues = []
        for key, run in analyzers:
            result = self._run(key, unavailable, run)
            if result is None:
                results[key] = None
                continue
            all_issues.extend(result['issues'])
            results[key] = {name: value for name, value in result.items() if name != 'issues'}

        if usage is not None:
            unresolved = self._run('unresolved_references', unavailable,
                                   unresolved_reference_issues, container, usage)
            all_issues.extend(unresolved or [])

        migration = self._run('migration_suggestions', unavailable,
                              build_migration_suggestions, container) or []

        quality_score = aggregate_quality_score(self._dimension_values(container, results), self.config)
        # Failed helpers are reported too, the score lists only its own dimensions
        for key in quality_score.unavailable:
            if key not in unavailable:
                unavailable.append(key)

        return ContainerAnalysis(
            quality_score=quality_score,
            results=results,
            issue_index=build_issue_index(all_issues),
            action_plan=build_action_plan(self._action_counts(results)),
            counts={
                'tags': len(container.tags),
                'triggers': len(container.triggers),
                'variables': len(container.variables),
                'builtin_variables': len(container.builtin_variable_names),
                'paused_tags': sum(1 for tag in container.tags if tag.paused),
                'issues': len(all_issues),
            },
            distribution=self._distribution(container),
            migration_suggestions=migration,
            unavailable=unavailable,
            warnings=warnings,
            usage=usage,
        )

    def _run(self, name: str, unavailable: List[str], func: Callable, *args):
        try:
            return func(*args)
        except Exception:
            logger.exception("Analyzer '%s' failed; its results are excluded", name)
            unavailable.append(name)
            return None

    @staticmethod
    def _dimension_values(container: GTMContainer, results: Dict) -> Dict[str, Optional[float]]:
        values = {key: None for key in ('tags', 'triggers', 'variables', 'consent',
                                        'trigger_quality', 'variable_quality', 'html_security')}

        # Trigger and variable naming issues come from the tag rules
        named = {'trigger': set(), 'variable': set()}
        tag_rules = results.get('tag_rules')
        if tag_rules is not None:
            stats = tag_rules['tag_rules']['stats']
            values['tags'] = cleanliness(stats['total'], stats['clean'])
            for issue in tag_rules['tag_rules']['issues']:
                if issue['entity_type'] in named:
                    named[issue['entity_type']].add(issue['entity_id'])

        consent = results.get('consent_mode')
        if consent is not None:
            values['consent'] = consent['consent_coverage']['score'] * 100

        trigger_quality = results.get('trigger_quality')
        if trigger_quality is not None:
            flagged = {issue['entity_id'] for issue in trigger_quality['trigger_quality']['issues']}
            flagged |= named['trigger']
            total = len(container.triggers)
            clean = sum(1 for trigger in container.triggers if trigger.trigger_id not in flagged)
            values['triggers'] = cleanliness(total, clean)
            values['trigger_quality'] = trigger_quality['trigger_quality']['score'] * 100

        variable_quality = results.get('variable_quality')
        if variable_quality is not None:
            flagged = {issue['entity_id'] for issue in variable_quality['variable_quality']['issues']}
            flagged |= named['variable']
            total = len(container.variables)
            clean = sum(1 for variable in container.variables if variable.variable_id not in flagged)
            values['variables'] = cleanliness(total, clean)
            values['variable_quality'] = variable_quality['variable_quality']['score'] * 100

        html = results.get('html_security')
        if html is not None:
            values['html_security'] = html['html_security']['score'] * 100

        return values

    @staticmethod
    def _action_counts(results: Dict) -> Dict[str, int]:
        counts = {}

        tag_rules = results.get('tag_rules')
        if tag_rules is not None:
            stats = tag_rules['tag_rules']['stats']
            counts['double_pageview'] = 1 if tag_rules['tag_rules']['double_page_view']['detected'] else 0
            counts['ua_obsolete'] = stats['ua_obsolete']
            counts['paused'] = stats['paused']
            counts['naming'] = naming_total(stats)

        consent = results.get('consent_mode')
        if consent is not None:
            coverage = consent['consent_coverage']
            counts['consent_mode'] = coverage['missing'] + coverage['not_configured']

        html = results.get('html_security')
        if html is not None:
            security = html['html_security']
            counts['html_security'] = security['critical'] + security['major'] + security['minor']

        unused = 0
        trigger_quality = results.get('trigger_quality')
        if trigger_quality is not None:
            issues = trigger_quality['trigger_quality']['issues']
            counts['trigger_quality'] = sum(1 for issue in issues if issue['categories'] != ['trigger_unused'])
            unused += trigger_quality['trigger_quality']['stats']['unused_triggers']

        variable_quality = results.get('variable_quality')
        if variable_quality is not None:
            stats = variable_quality['variable_quality']['stats']
            counts['variable_quality'] = sum(stats[key] for key in STAT_KEYS)
            unused += stats['unused']

        counts['unused'] = unused
        return counts

    @staticmethod
    def _distribution(container: GTMContainer) -> Dict[str, Dict[str, int]]:
        tag_families = Counter(TAG_FAMILIES.get(tag.type_lower, 'other') for tag in container.tags)
        tag_types = Counter(get_tag_type_name(tag.type) for tag in container.tags)
        trigger_families = Counter(trigger.family or 'UNKNOWN' for trigger in container.triggers)
        variable_kinds = Counter(variable.kind for variable in container.variables)
        return {
            'tag_families': dict(sorted(tag_families.items())),
            'tag_types': dict(sorted(tag_types.items())),
            'trigger_families': dict(sorted(trigger_families.items())),
            'variable_kinds': dict(sorted(variable_kinds.items())),
        }


def analyze_container(data, config: QualityConfig = None) -> ContainerAnalysis:
    """Analyze a GTM export (bare container version or full export)"""
    return ContainerQualityEngine(config).analyze(data)
