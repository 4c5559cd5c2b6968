from builders import make_container, make_tag, make_trigger, make_variable, param
from gtm_usage_graph import (build_usage_graph, collect_placeholders, extract_placeholders,
                             unresolved_reference_issues)


def test_extract_placeholders_trims_names():
    assert extract_placeholders('{{ Page URL }}?id={{dlv - user id}}') == {'Page URL', 'dlv - user id'}
    assert extract_placeholders('{{}} and {{  }}') == set()
    assert extract_placeholders('no placeholders') == set()


def test_collect_placeholders_walks_nested_values():
    raw = {'parameter': [{'key': 'map', 'list': [{'value': '{{a}}'}, ['{{b}}', 3]]}]}
    assert collect_placeholders(raw) == {'a', 'b'}


def test_collect_placeholders_stops_at_depth_limit():
    raw = {'outer': {'inner': '{{deep}}'}}
    assert collect_placeholders(raw, max_depth=1) == set()
    assert collect_placeholders(raw, max_depth=2) == {'deep'}


def test_usage_graph_records_placeholder_referrers():
    container = make_container(
        tags=[make_tag('10', 'ga4_event', 'gaawe', firing=['1'],
                       parameters=[param('value', '{{dlv_value}}')])],
        triggers=[make_trigger('1', 'all_pages')],
        variables=[make_variable('20', 'dlv_value')],
    )
    usage = build_usage_graph(container)
    assert 'dlv_value' in usage.referenced_names
    assert usage.referrers('dlv_value') == [('tag', '10')]
    assert usage.referrers('nobody') == []


def test_usage_graph_tracks_firing_blocking_and_group_triggers():
    container = make_container(
        tags=[make_tag('10', 'tag_a', firing=['1', '9'], blocking=['2'])],
        triggers=[
            make_trigger('1', 'all_pages'),
            make_trigger('2', 'blocker', 'CUSTOM_EVENT'),
            make_trigger('3', 'member', 'CLICK'),
            make_trigger('9', 'group', 'TRIGGER_GROUP', parameters=[
                {'type': 'list', 'key': 'triggerIds',
                 'list': [{'type': 'triggerReference', 'value': '3'}]},
            ]),
        ],
    )
    usage = build_usage_graph(container)
    assert usage.referenced_trigger_ids == {'1', '2', '3', '9'}
    assert usage.tags_using_trigger('1') == ['10']
    assert usage.tags_using_trigger('2') == []
    assert usage.tags_using_trigger('2', 'blocking') == ['10']
    # Trigger ids are part of the referenced names as well
    assert {'1', '2', '3', '9'} <= usage.referenced_names


def test_self_reference_counts_as_usage():
    container = make_container(variables=[
        make_variable('20', 'js_self', 'jsm', parameters=[param('javascript', 'function(){return {{js_self}};}')]),
    ])
    usage = build_usage_graph(container)
    assert 'js_self' in usage.referenced_names


def test_summary_is_sorted():
    container = make_container(tags=[make_tag('10', 'tag_a', firing=['2', '1'],
                                              parameters=[param('a', '{{zeta}} {{alpha}}')])])
    summary = build_usage_graph(container).summary()
    assert summary['referenced_names'] == ['1', '2', 'alpha', 'zeta']
    assert summary['referenced_trigger_ids'] == ['1', '2']


def test_unresolved_references():
    container = make_container(
        tags=[make_tag('10', 'tag_a', parameters=[
            param('a', '{{Missing Var}}'),
            param('b', '{{Page URL}}'),
            param('c', '{{_event}}'),
            param('d', '{{dlv_value}}'),
            param('e', '{{Custom Builtin}}'),
        ])],
        variables=[make_variable('20', 'dlv_value')],
        builtins=['Custom Builtin'],
    )
    issues = unresolved_reference_issues(container, build_usage_graph(container))
    assert len(issues) == 1
    issue = issues[0]
    assert issue.entity_id == '10'
    assert issue.entity_type == 'tag'
    assert issue.name == 'tag_a'
    assert issue.categories == ['unresolved_reference']
    assert issue.severity == 'minor'
    assert issue.meta == {'reference': 'Missing Var'}
