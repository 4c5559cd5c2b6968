import pytest

from builders import make_export, make_tag, make_trigger, make_variable, param
from gtm_container import (ContainerFormatError, GTMContainer, Issue, Trigger, normalize_trigger_type,
                           parameter_value, status_from_score, variable_kind, weighted_score,
                           worst_severity)


class TestFromExport:

    def test_none_is_an_empty_container(self):
        container = GTMContainer.from_export(None)
        assert container.tags == ()
        assert container.triggers == ()
        assert container.variables == ()

    @pytest.mark.parametrize('data', [[], 'container', 42])
    def test_non_mapping_is_rejected(self, data):
        with pytest.raises(ContainerFormatError):
            GTMContainer.from_export(data)

    def test_full_export_and_bare_version_are_equivalent(self):
        export = make_export(tags=[make_tag('1', 'a_tag', firing=['2'])],
                             triggers=[make_trigger('2', 'all_pages')],
                             variables=[make_variable('3', 'dlv_a')],
                             builtins=['Page URL'])
        full = GTMContainer.from_export(export)
        bare = GTMContainer.from_export(export['containerVersion'])
        assert full == bare
        assert full.builtin_variable_names == ('Page URL',)

    def test_malformed_entries_are_skipped(self):
        container = GTMContainer.from_export({
            'tag': [make_tag('1', 'a_tag'), 'junk', None],
            'trigger': 'not a list',
            'variable': None,
        })
        assert [tag.tag_id for tag in container.tags] == ['1']
        assert container.triggers == ()
        assert container.variables == ()

    def test_missing_ids_fall_back_to_name_then_position(self):
        container = GTMContainer.from_export({'tag': [{'name': 'named_tag'}, {}]})
        assert [tag.tag_id for tag in container.tags] == ['named_tag', 'tag_1']

    def test_scalar_trigger_ids_are_normalized(self):
        container = GTMContainer.from_export({'tag': [
            {'tagId': '1', 'name': 'a_tag', 'firingTriggerId': '5', 'blockingTriggerId': 7},
        ]})
        tag = container.tags[0]
        assert tag.firing_trigger_ids == ('5',)
        assert tag.blocking_trigger_ids == ('7',)

    def test_html_is_read_from_parameter(self):
        container = GTMContainer.from_export({'tag': [make_tag('1', 'html_tag', html='<script></script>')]})
        assert container.tags[0].html == '<script></script>'


def test_parameter_value_reads_value_list_and_map():
    parameters = [
        param('eventName', 'purchase'),
        {'type': 'list', 'key': 'items', 'list': [1, 2]},
        {'type': 'map', 'key': 'settings', 'map': [{'key': 'a'}]},
    ]
    assert parameter_value(parameters, 'eventName') == 'purchase'
    assert parameter_value(parameters, 'items') == [1, 2]
    assert parameter_value(parameters, 'settings') == [{'key': 'a'}]
    assert parameter_value(parameters, 'missing') is None


@pytest.mark.parametrize('raw_type, family', [
    ('pageview', 'PAGEVIEW'),
    ('PAGEVIEW', 'PAGEVIEW'),
    ('domReady', 'DOM_READY'),
    ('DOM_READY', 'DOM_READY'),
    ('historyChange', 'HISTORY_CHANGE'),
    ('customEvent', 'CUSTOM_EVENT'),
    ('', ''),
])
def test_normalize_trigger_type(raw_type, family):
    assert normalize_trigger_type(raw_type) == family


def test_trigger_group_members():
    trigger = Trigger.from_dict(make_trigger('9', 'group', 'TRIGGER_GROUP', parameters=[
        {'type': 'list', 'key': 'triggerIds',
         'list': [{'type': 'triggerReference', 'value': '1'},
                  {'type': 'triggerReference', 'value': '2'}]},
    ]))
    assert trigger.group_trigger_ids == ('1', '2')


def test_variable_kind():
    assert variable_kind('v') == 'dlv'
    assert variable_kind('smm') == 'lookup'
    assert variable_kind('remm') == 'regex'
    assert variable_kind('jsm') == 'jsm'
    assert variable_kind('d', [param('selectorType', 'CSS')]) == 'css'
    assert variable_kind('d', [param('selectorType', 'ID')]) == 'other'
    assert variable_kind('') == 'other'


def test_worst_severity():
    assert worst_severity(['minor', 'critical', 'major']) == 'critical'
    assert worst_severity([]) is None


def test_status_from_score():
    thresholds = {'critical': 0.5, 'major': 0.7, 'minor': 0.85}
    assert status_from_score(0.2, thresholds) == 'critical'
    assert status_from_score(0.6, thresholds) == 'major'
    assert status_from_score(0.8, thresholds) == 'minor'
    assert status_from_score(0.85, thresholds) == 'ok'


def test_weighted_score_is_clamped():
    weights = {'a': 1, 'b': 1}
    assert weighted_score({'a': 1.0, 'b': 0.0}, weights) == pytest.approx(0.5)
    assert weighted_score({'a': 2.0, 'b': 2.0}, weights) == 1.0
    assert weighted_score({'a': 1.0}, {'a': 0}) == 0.0


def test_issue_to_dict_omits_empty_optional_fields():
    issue = Issue('1', 'tag', 'a_tag', ['paused'], 'minor', 'Tag is paused')
    assert issue.to_dict() == {
        'entity_id': '1',
        'entity_type': 'tag',
        'name': 'a_tag',
        'categories': ['paused'],
        'severity': 'minor',
        'reason': 'Tag is paused',
    }


def test_entity_parameters_are_looked_up():
    container = GTMContainer.from_export(make_export(
        tags=[make_tag('1', 'a_tag', parameters=[param('eventName', 'purchase')])],
        variables=[make_variable('2', 'dlv_a', 'v', [param('name', 'user.id'), param('defaultValue', '')])],
    ))
    tag = container.tags[0]
    variable = container.variables[0]
    assert isinstance(tag.parameters, tuple)
    assert tag.param('eventName') == 'purchase'
    assert variable.param('name') == 'user.id'
    assert variable.has_param('defaultValue') is True
    assert variable.has_param('missing') is False
    assert parameter_value(tuple(tag.parameters), 'eventName') == 'purchase'
