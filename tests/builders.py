"""
Small builders for GTM export fragments used across the test modules.
"""

from gtm_container import GTMContainer


def param(key, value, param_type='template'):
    return {'type': param_type, 'key': key, 'value': value}


def list_param(key, values):
    return {'type': 'list', 'key': key,
            'list': [{'type': 'template', 'value': value} for value in values]}


def condition(arg1, arg0='{{Page URL}}', cond_type='MATCH_REGEX'):
    return {'type': cond_type, 'parameter': [param('arg0', arg0), param('arg1', arg1)]}


def make_tag(tag_id, name, tag_type='html', firing=(), blocking=(), paused=False,
             html=None, parameters=(), consent=None):
    raw = {'tagId': tag_id, 'name': name, 'type': tag_type}
    if firing:
        raw['firingTriggerId'] = list(firing)
    if blocking:
        raw['blockingTriggerId'] = list(blocking)
    if paused:
        raw['paused'] = True
    params = list(parameters)
    if html is not None:
        params.append(param('html', html))
    if params:
        raw['parameter'] = params
    if consent is not None:
        raw['consentSettings'] = consent
    return raw


def make_trigger(trigger_id, name, trigger_type='PAGEVIEW', filters=None,
                 custom_event_filters=None, parameters=()):
    raw = {'triggerId': trigger_id, 'name': name, 'type': trigger_type}
    if filters is not None:
        raw['filter'] = list(filters)
    if custom_event_filters is not None:
        raw['customEventFilter'] = list(custom_event_filters)
    if parameters:
        raw['parameter'] = list(parameters)
    return raw


def make_variable(variable_id, name, var_type='v', parameters=()):
    raw = {'variableId': variable_id, 'name': name, 'type': var_type}
    if parameters:
        raw['parameter'] = list(parameters)
    return raw


def consent_block(*consents, status='NEEDED'):
    block = {'consentStatus': status}
    if consents:
        block['consentType'] = {
            'type': 'list',
            'list': [{'type': 'template', 'value': consent} for consent in consents],
        }
    return block


def make_export(tags=(), triggers=(), variables=(), builtins=()):
    return {
        'exportFormatVersion': 2,
        'containerVersion': {
            'tag': list(tags),
            'trigger': list(triggers),
            'variable': list(variables),
            'builtInVariable': [{'type': 'PAGE_URL', 'name': name} for name in builtins],
        },
    }


def make_container(tags=(), triggers=(), variables=(), builtins=()):
    return GTMContainer.from_export(make_export(tags, triggers, variables, builtins))
