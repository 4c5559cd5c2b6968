import copy
import json

import gtm_quality_engine
from builders import condition, make_export, make_tag, make_trigger, make_variable, param
from gtm_quality_engine import ContainerQualityEngine, analyze_container


def _component(analysis, key):
    return [c for c in analysis.quality_score.breakdown if c.key == key][0]


def test_empty_container_scores_full_marks():
    analysis = analyze_container({})
    assert analysis.quality_score.total == 100.0
    assert analysis.issues == []
    assert analysis.action_plan == []
    assert analysis.unavailable == []
    assert analysis.warnings == []


def test_non_mapping_input_is_reported_as_warning():
    analysis = analyze_container(['not', 'a', 'container'])
    assert len(analysis.warnings) == 1
    assert analysis.quality_score.total == 100.0
    assert analysis.counts['tags'] == 0


def test_unfiltered_page_view_triggers():
    export = make_export(triggers=[
        make_trigger('1', 'all_pages'),
        make_trigger('2', 'all_pages_copy'),
        make_trigger('3', 'all_pages_regex', filters=[condition('.*')]),
        make_trigger('4', 'all_pages_true', filters=[condition('true', cond_type='EQUALS')]),
        make_trigger('5', 'all_pages_star', filters=[condition('*', cond_type='EQUALS')]),
    ])
    report = analyze_container(export).to_dict()
    quality = report['trigger_quality']['trigger_quality']
    assert quality['stats']['all_pages_unfiltered'] == 5
    assert quality['stats']['duplicates'] == 1
    assert quality['breakdown']['specificity'] < 1
    assert report['issue_index']['by_category']['trigger_duplicate'] == ['2']


def test_lookup_table_without_default():
    export = make_export(variables=[make_variable('1', 'lt_country', 'smm', [param('input', '{{Page Hostname}}')])])
    report = analyze_container(export).to_dict()
    quality = report['variable_quality']['variable_quality']
    assert quality['breakdown']['lookup'] == 0.0
    assert report['issue_index']['by_category']['lookup_without_default'] == ['1']
    lookup = [issue for issue in report['issue_index']['by_id']['1']
              if issue['categories'] == ['lookup_without_default']]
    assert len(lookup) == 1
    assert lookup[0]['severity'] == 'critical'


def test_custom_html_with_eval_and_network_call():
    export = make_export(
        triggers=[make_trigger('1', 'dom_ready', 'DOM_READY')],
        tags=[make_tag('10', 'chat_widget', firing=['1'], html='<script>eval(data); fetch(url)</script>')],
    )
    security = analyze_container(export).to_dict()['html_security']['html_security']
    assert security['critical'] == 1
    assert security['details'][0]['severity'] == 'critical'


def test_sample_container(sample_export):
    analysis = analyze_container(sample_export)
    assert 0 < analysis.quality_score.total < 100
    assert analysis.counts == {
        'tags': 6,
        'triggers': 4,
        'variables': 2,
        'builtin_variables': 2,
        'paused_tags': 1,
        'issues': len(analysis.issues),
    }
    assert [action['type'] for action in analysis.action_plan] == [
        'consent_mode', 'html_security', 'trigger_quality', 'variable_quality',
        'ua_obsolete', 'paused', 'unused', 'naming',
    ]
    assert [s['ua_tag_id'] for s in analysis.migration_suggestions] == ['13']
    assert analysis.issue_index.has('unresolved_reference', '15')
    assert analysis.issues[0].categories == ['ua_obsolete']


def test_distribution(sample_export):
    distribution = analyze_container(sample_export).distribution
    assert distribution['tag_families'] == {'gaawe': 1, 'googtag': 1, 'html': 2, 'other': 1, 'ua': 1}
    assert distribution['variable_kinds'] == {'dlv': 1, 'lookup': 1}
    assert distribution['trigger_families'] == {'CLICK': 1, 'CUSTOM_EVENT': 1, 'DOM_READY': 1, 'PAGEVIEW': 1}


def test_report_is_json_serializable(sample_export):
    report = analyze_container(sample_export).to_dict()
    assert json.loads(json.dumps(report)) == report
    assert list(report)[:6] == ['quality_score', 'tag_rules', 'consent_mode', 'trigger_quality',
                                'variable_quality', 'html_security']


def test_analysis_is_deterministic_and_leaves_input_untouched(sample_export):
    original = copy.deepcopy(sample_export)
    engine = ContainerQualityEngine()
    first = engine.analyze(sample_export).to_dict()
    second = engine.analyze(sample_export).to_dict()
    assert first == second
    assert sample_export == original


def test_failing_analyzer_degrades_gracefully(sample_export, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError('boom')

    monkeypatch.setattr(gtm_quality_engine, 'analyze_html_security', broken)
    analysis = analyze_container(sample_export)
    assert analysis.results['html_security'] is None
    assert 'html_security' in analysis.unavailable
    assert analysis.quality_score.unavailable == ['html_security']
    assert _component(analysis, 'html_security').available is False
    assert 0 <= analysis.quality_score.total <= 100
    assert analysis.to_dict()['html_security'] is None
    assert all(not issue.categories[0].startswith('html_security') for issue in analysis.issues)


def test_extra_paused_tag_never_raises_tag_cleanliness(sample_export):
    before = _component(analyze_container(sample_export), 'tags').value
    sample_export['containerVersion']['tag'].append(
        make_tag('16', 'paused_pixel', 'html', firing=['2'], paused=True))
    after = _component(analyze_container(sample_export), 'tags').value
    assert after <= before


def test_score_stays_in_range_for_a_messy_container():
    export = make_export(
        triggers=[make_trigger(str(i), f'All Pages {i}') for i in range(5)],
        tags=[make_tag(str(10 + i), f'Tag {i}', 'awct', paused=True, firing=['99'],
                       html='<script>eval(x); fetch(y); document.write(z);</script>') for i in range(5)],
        variables=[make_variable(str(20 + i), 'Lookup', 'smm') for i in range(5)],
    )
    analysis = analyze_container(export)
    assert 0 <= analysis.quality_score.total <= 100
    assert analysis.counts['issues'] > 0


def test_realistic_export_counts_per_category(realistic_export):
    analysis = analyze_container(realistic_export)
    assert analysis.warnings == []
    assert analysis.unavailable == []
    assert analysis.issue_index.counters == {
        'paused': 1,
        'ua_obsolete': 1,
        'naming': 9,
        'consent_missing': 2,
        'variable_unused': 2,
        'regex_malformed': 1,
        'html_security_critical': 1,
    }

    report = analysis.to_dict()
    tag_stats = report['tag_rules']['tag_rules']['stats']
    assert tag_stats == {
        'total': 4, 'paused': 1, 'ua_obsolete': 1, 'naming': 4, 'no_trigger': 0,
        'dangling_trigger': 0, 'clean': 0, 'naming_triggers': 2, 'naming_variables': 3,
    }
    variables = report['variable_quality']['variable_quality']
    assert variables['kind_counts'] == {'dlv': 1, 'lookup': 1, 'regex': 1}
    assert variables['stats']['dlv_missing_fallback'] == 0
    assert variables['stats']['lookup_without_default'] == 0
    assert report['issue_index']['by_category']['regex_malformed'] == ['22']
    assert report['trigger_quality']['trigger_quality']['issues'] == []

    html = report['html_security']['html_security']
    assert html['critical'] == 1
    assert html['details'][0]['fires_on'] == 'DOM_READY'
    assert html['third_parties'] == ['chat.example.com']

    consent = {detail['id']: detail['state'] for detail in report['consent_mode']['consent_coverage']['details']}
    assert consent == {'5': 'not_configured', '7': 'not_configured'}
    assert [s['ua_tag_id'] for s in report['migration_suggestions']] == ['8']
    assert {item['type']: item['count'] for item in analysis.action_plan}['naming'] == 9
