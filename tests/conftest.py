import pytest

from builders import (condition, consent_block, make_export, make_tag, make_trigger,
                      make_variable, param)
from gtm_quality_config import QualityConfig


@pytest.fixture
def config():
    return QualityConfig()


@pytest.fixture
def sample_export():
    """A small container touching every analyzer"""
    triggers = [
        make_trigger('1', 'All Pages'),
        make_trigger('2', 'dom_ready_checkout', 'DOM_READY', filters=[condition('/checkout')]),
        make_trigger('3', 'ce_purchase', 'CUSTOM_EVENT',
                     custom_event_filters=[condition('purchase', '{{_event}}', 'EQUALS')]),
        make_trigger('4', 'unused_trigger', 'CLICK', filters=[condition('buy', '{{Click ID}}', 'EQUALS')]),
    ]
    tags = [
        make_tag('10', 'ga4_config', 'googtag', firing=['1'],
                 parameters=[param('tagId', 'G-TEST123')],
                 consent=consent_block('analytics_storage')),
        make_tag('11', 'ga4_purchase', 'gaawe', firing=['3'],
                 parameters=[param('eventName', 'purchase'), param('value', '{{dlv_value}}')],
                 consent=consent_block('analytics_storage')),
        make_tag('12', 'ads_conversion', 'awct', firing=['3']),
        make_tag('13', 'UA Pageview', 'ua', firing=['1'],
                 parameters=[param('trackType', 'TRACK_PAGEVIEW')]),
        make_tag('14', 'chat_widget', 'html', firing=['2'],
                 html='<script>eval(payload); fetch("https://chat.example.com/api");</script>'),
        make_tag('15', 'old_banner', 'html', firing=['2'], paused=True,
                 html='<script>console.log({{Missing Variable}});</script>'),
    ]
    variables = [
        make_variable('20', 'dlv_value', 'v', parameters=[param('name', 'ecommerce.value')]),
        make_variable('21', 'lt_country', 'smm', parameters=[param('input', '{{Page Hostname}}')]),
    ]
    return make_export(tags, triggers, variables, builtins=['Page URL', 'Page Hostname'])


def _template(key, value):
    return {'type': 'TEMPLATE', 'key': key, 'value': value}


@pytest.fixture
def realistic_export():
    """Export shaped like GTM's own JSON download: script, defaults and tables live in parameters"""
    ids = {'accountId': '6000000001', 'containerId': '10000001'}
    tags = [
        dict(ids, tagId='5', name='GA4 - Config', type='googtag',
             parameter=[_template('tagId', 'G-ABC123XYZ')],
             firingTriggerId=['2147479553'], tagFiringOption='ONCE_PER_EVENT',
             consentSettings={'consentStatus': 'NOT_SET'}),
        dict(ids, tagId='6', name='cHTML - Chat', type='html',
             parameter=[
                 _template('html', '<script>\nvar s = window.eval(atob(cfg));\n'
                                   'fetch("https://chat.example.com/w?x=" + s);\n</script>'),
                 {'type': 'BOOLEAN', 'key': 'supportDocumentWrite', 'value': 'false'},
             ],
             firingTriggerId=['12'], tagFiringOption='ONCE_PER_EVENT',
             consentSettings={'consentStatus': 'NOT_SET'}),
        dict(ids, tagId='7', name='Ads - Purchase', type='awct',
             parameter=[
                 _template('conversionId', '123456789'),
                 _template('conversionLabel', 'AbC-dEf'),
                 _template('conversionValue', '{{DLV - value}}'),
             ],
             firingTriggerId=['13'], tagFiringOption='ONCE_PER_EVENT'),
        dict(ids, tagId='8', name='UA - Pageview', type='ua', paused=True,
             parameter=[
                 _template('trackType', 'TRACK_PAGEVIEW'),
                 _template('trackingId', 'UA-1234567-1'),
             ],
             firingTriggerId=['2147479553'], tagFiringOption='ONCE_PER_EVENT'),
    ]
    triggers = [
        dict(ids, triggerId='12', name='DOM Ready - Checkout', type='DOM_READY',
             filter=[{'type': 'CONTAINS', 'parameter': [_template('arg0', '{{Page Path}}'),
                                                         _template('arg1', '/checkout')]}]),
        dict(ids, triggerId='13', name='CE - purchase', type='CUSTOM_EVENT',
             customEventFilter=[{'type': 'EQUALS', 'parameter': [_template('arg0', '{{_event}}'),
                                                                  _template('arg1', 'purchase')]}]),
    ]
    variables = [
        dict(ids, variableId='20', name='DLV - value', type='v', parameter=[
            {'type': 'INTEGER', 'key': 'dataLayerVersion', 'value': '2'},
            {'type': 'BOOLEAN', 'key': 'setDefaultValue', 'value': 'true'},
            _template('name', 'ecommerce.value'),
            _template('defaultValue', '0'),
        ]),
        dict(ids, variableId='21', name='LT - Country', type='smm', parameter=[
            {'type': 'BOOLEAN', 'key': 'setDefaultValue', 'value': 'true'},
            _template('input', '{{Page Hostname}}'),
            _template('defaultValue', 'other'),
            {'type': 'LIST', 'key': 'map', 'list': [
                {'type': 'MAP', 'map': [_template('key', 'shop.example.it'), _template('value', 'IT')]},
            ]},
        ]),
        dict(ids, variableId='22', name='RT - Section', type='remm', parameter=[
            _template('input', '{{Page Path}}'),
            {'type': 'LIST', 'key': 'map', 'list': [
                {'type': 'MAP', 'map': [_template('key', '(?<=https?://)shop'), _template('value', 'shop')]},
                {'type': 'MAP', 'map': [_template('key', '/shop/('), _template('value', 'broken')]},
            ]},
        ]),
    ]
    builtins = [dict(ids, type=kind, name=name) for kind, name in
                (('PAGE_PATH', 'Page Path'), ('PAGE_HOSTNAME', 'Page Hostname'), ('EVENT', 'Event'))]
    return {
        'exportFormatVersion': 2,
        'exportTime': '2024-05-02 10:15:00',
        'containerVersion': dict(ids, containerVersionId='0', tag=tags, trigger=triggers,
                                 variable=variables, builtInVariable=builtins,
                                 fingerprint='1714644900000'),
    }
