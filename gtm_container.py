#!/usr/bin/env python3
"""
GTM Container Model
Read-only views over a GTM export: tags, triggers, variables and the issues
reported against them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

SEVERITIES = ('minor', 'major', 'critical')
SEVERITY_RANK = {'minor': 1, 'major': 2, 'critical': 3}


class ContainerFormatError(ValueError):
    """Raised when the input is not a GTM container mapping"""


def worst_severity(severities) -> Optional[str]:
    """Return the most urgent severity in an iterable, or None if empty"""
    worst = None
    for severity in severities:
        if worst is None or SEVERITY_RANK.get(severity, 0) > SEVERITY_RANK.get(worst, 0):
            worst = severity
    return worst


def as_list(value) -> list:
    """Treat None and wrong-typed fields as empty lists"""
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return []


def as_id_tuple(value) -> Tuple[str, ...]:
    """Normalize a trigger id field (scalar or list) to a tuple of strings"""
    if value is None or value == '':
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if v is not None and v != '')
    return (str(value),)


def is_truthy(value) -> bool:
    """GTM stores booleans as 'true'/'false' strings"""
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def parameter_value(parameters, key: str):
    """Find a parameter by key and return its value, list or map (None if absent)"""
    for param in as_list(parameters):
        if not isinstance(param, dict) or param.get('key') != key:
            continue
        if 'value' in param:
            return param['value']
        if 'list' in param:
            return param['list']
        if 'map' in param:
            return param['map']
        return None
    return None


def has_parameter(parameters, key: str) -> bool:
    """True if a parameter with this key exists, whatever its value"""
    return any(isinstance(p, dict) and p.get('key') == key for p in as_list(parameters))


def _entity_id(raw: dict, id_field: str, prefix: str, position: int) -> str:
    # Fall back to the name, then to the position, so issues stay addressable
    value = raw.get(id_field)
    if value is not None and value != '':
        return str(value)
    name = raw.get('name')
    if isinstance(name, str) and name:
        return name
    return f'{prefix}_{position}'


def _text(value, default: str = '') -> str:
    return value if isinstance(value, str) else default


# Trigger type spellings seen in exports, mapped to one family name
TRIGGER_TYPE_ALIASES = {
    'pageview': 'PAGEVIEW',
    'domready': 'DOM_READY',
    'windowloaded': 'WINDOW_LOADED',
    'historychange': 'HISTORY_CHANGE',
    'customevent': 'CUSTOM_EVENT',
    'linkclick': 'LINK_CLICK',
    'click': 'CLICK',
    'formsubmit': 'FORM_SUBMISSION',
    'formsubmission': 'FORM_SUBMISSION',
    'elementvisibility': 'ELEMENT_VISIBILITY',
    'scrolldepth': 'SCROLL_DEPTH',
    'youtubevideo': 'YOU_TUBE_VIDEO',
    'timer': 'TIMER',
    'jserror': 'JS_ERROR',
    'triggergroup': 'TRIGGER_GROUP',
    'init': 'INIT',
    'consentinit': 'CONSENT_INIT',
}


def normalize_trigger_type(trigger_type: str) -> str:
    """Map 'pageview', 'domReady', 'DOM_READY' ... onto one upper-case family"""
    if not trigger_type:
        return ''
    compact = trigger_type.replace('_', '').replace('-', '').lower()
    return TRIGGER_TYPE_ALIASES.get(compact, trigger_type.upper())


# Variable type -> kind discriminant
VARIABLE_KINDS = {
    'v': 'dlv',
    'datalayervariable': 'dlv',
    'smm': 'lookup',
    'lookup': 'lookup',
    'lookuptable': 'lookup',
    'remm': 'regex',
    'regex': 'regex',
    'jsm': 'jsm',
    'js': 'jsm',
    'javascript': 'jsm',
    'css': 'css',
    'dom': 'css',
    'c': 'constant',
}


@dataclass(frozen=True)
class Tag:
    tag_id: str
    name: str
    type: str
    paused: bool
    parameters: Tuple[Any, ...]
    firing_trigger_ids: Tuple[str, ...]
    blocking_trigger_ids: Tuple[str, ...]
    raw: Dict[str, Any] = field(repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: dict, position: int = 0) -> 'Tag':
        return cls(
            tag_id=_entity_id(raw, 'tagId', 'tag', position),
            name=_text(raw.get('name')),
            type=_text(raw.get('type')),
            paused=raw.get('paused') is True,
            parameters=tuple(as_list(raw.get('parameter'))),
            firing_trigger_ids=as_id_tuple(raw.get('firingTriggerId')),
            blocking_trigger_ids=as_id_tuple(raw.get('blockingTriggerId')),
            raw=raw,
        )

    def param(self, key: str):
        return parameter_value(self.parameters, key)

    @property
    def type_lower(self) -> str:
        return self.type.lower()

    @property
    def html(self) -> str:
        """Inline script text from the html field or the html parameter"""
        value = self.raw.get('html')
        if not isinstance(value, str) or not value:
            value = self.param('html')
        return value if isinstance(value, str) else ''

    @property
    def consent_settings(self) -> Optional[dict]:
        value = self.raw.get('consentSettings')
        return value if isinstance(value, dict) else None


@dataclass(frozen=True)
class Trigger:
    trigger_id: str
    name: str
    type: str
    family: str
    paused: bool
    filters: Tuple[Any, ...]
    auto_event_filters: Tuple[Any, ...]
    custom_event_filters: Tuple[Any, ...]
    parameters: Tuple[Any, ...]
    raw: Dict[str, Any] = field(repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: dict, position: int = 0) -> 'Trigger':
        trigger_type = _text(raw.get('type'))
        return cls(
            trigger_id=_entity_id(raw, 'triggerId', 'trigger', position),
            name=_text(raw.get('name')),
            type=trigger_type,
            family=normalize_trigger_type(trigger_type),
            paused=raw.get('paused') is True,
            filters=tuple(as_list(raw.get('filter'))),
            auto_event_filters=tuple(as_list(raw.get('autoEventFilter'))),
            custom_event_filters=tuple(as_list(raw.get('customEventFilter'))),
            parameters=tuple(as_list(raw.get('parameter'))),
            raw=raw,
        )

    def param(self, key: str):
        return parameter_value(self.parameters, key)

    @property
    def all_conditions(self) -> Tuple[Any, ...]:
        return self.filters + self.auto_event_filters + self.custom_event_filters

    @property
    def group_trigger_ids(self) -> Tuple[str, ...]:
        """Member trigger ids of a TRIGGER_GROUP"""
        if self.family != 'TRIGGER_GROUP':
            return ()
        ids = []
        for item in as_list(self.param('triggerIds')):
            if isinstance(item, dict):
                if item.get('value') not in (None, ''):
                    ids.append(str(item['value']))
            elif item not in (None, ''):
                ids.append(str(item))
        return tuple(ids)


@dataclass(frozen=True)
class Variable:
    variable_id: str
    name: str
    type: str
    kind: str
    parameters: Tuple[Any, ...]
    raw: Dict[str, Any] = field(repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: dict, position: int = 0) -> 'Variable':
        var_type = _text(raw.get('type'))
        parameters = tuple(as_list(raw.get('parameter')))
        return cls(
            variable_id=_entity_id(raw, 'variableId', 'variable', position),
            name=_text(raw.get('name')),
            type=var_type,
            kind=variable_kind(var_type, parameters),
            parameters=parameters,
            raw=raw,
        )

    def param(self, key: str):
        return parameter_value(self.parameters, key)

    def has_param(self, key: str) -> bool:
        return has_parameter(self.parameters, key)


def variable_kind(var_type: str, parameters=()) -> str:
    """Discriminate a variable by its template type"""
    kind = VARIABLE_KINDS.get(var_type.lower(), 'other') if var_type else 'other'
    # DOM Element variables only count as selectors when they use CSS
    if var_type == 'd':
        selector_type = parameter_value(parameters, 'selectorType')
        if isinstance(selector_type, str) and selector_type.upper() == 'CSS':
            return 'css'
    return kind


@dataclass(frozen=True)
class GTMContainer:
    tags: Tuple[Tag, ...] = ()
    triggers: Tuple[Trigger, ...] = ()
    variables: Tuple[Variable, ...] = ()
    builtin_variable_names: Tuple[str, ...] = ()

    @classmethod
    def from_export(cls, data) -> 'GTMContainer':
        """Build a container from a bare container version or a full export"""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ContainerFormatError(f'Expected a JSON object, got {type(data).__name__}')

        container_version = data.get('containerVersion')
        if isinstance(container_version, dict):
            data = container_version

        tags = tuple(Tag.from_dict(raw, i) for i, raw in _entities(data, 'tag'))
        triggers = tuple(Trigger.from_dict(raw, i) for i, raw in _entities(data, 'trigger'))
        variables = tuple(Variable.from_dict(raw, i) for i, raw in _entities(data, 'variable'))

        builtins = []
        for _, raw in _entities(data, 'builtInVariable'):
            if isinstance(raw.get('name'), str):
                builtins.append(raw['name'])

        return cls(tags=tags, triggers=triggers, variables=variables,
                   builtin_variable_names=tuple(builtins))

    def trigger_by_id(self) -> Dict[str, Trigger]:
        return {trigger.trigger_id: trigger for trigger in self.triggers}

    def variable_names(self) -> List[str]:
        return [variable.name for variable in self.variables]


def _entities(data: dict, section: str):
    """Yield (position, entity) for the mapping entries of one section"""
    items = data.get(section)
    if items is None:
        return
    if not isinstance(items, list):
        logger.warning("Section '%s' is not a list, treating it as empty", section)
        return
    for position, raw in enumerate(items):
        if isinstance(raw, dict):
            yield position, raw
        else:
            logger.warning("Skipping malformed %s entry at position %d", section, position)


@dataclass
class Issue:
    entity_id: str
    entity_type: str
    name: str
    categories: List[str]
    severity: str
    reason: str
    suggestion: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'entity_id': self.entity_id,
            'entity_type': self.entity_type,
            'name': self.name,
            'categories': list(self.categories),
            'severity': self.severity,
            'reason': self.reason,
        }
        if self.suggestion is not None:
            data['suggestion'] = self.suggestion
        if self.meta:
            data['meta'] = dict(self.meta)
        return data


def status_message(title: str, status: str, summary: str, cta: str) -> Dict[str, str]:
    """Presentation hint envelope shared by every analyzer"""
    return {'status': status, 'title': title, 'summary': summary, 'cta': cta}


def status_from_score(score: float, thresholds: Dict[str, float]) -> str:
    """Map a 0-1 score onto critical/major/minor/ok"""
    if score < thresholds['critical']:
        return 'critical'
    if score < thresholds['major']:
        return 'major'
    if score < thresholds['minor']:
        return 'minor'
    return 'ok'


def weighted_score(breakdown: Dict[str, float], weights: Dict[str, float]) -> float:
    """Weighted mean of 0-1 sub-scores, clamped to [0, 1]"""
    total_weight = sum(weights.get(key, 0) for key in breakdown)
    if total_weight <= 0:
        return 0.0
    score = sum(weights.get(key, 0) * value for key, value in breakdown.items()) / total_weight
    return min(1.0, max(0.0, score))
