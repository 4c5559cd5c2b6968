#!/usr/bin/env python3
"""
GTM Usage Graph
Finds every {{Variable}} placeholder and trigger id referenced by the
container and records who references what in a networkx graph.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

import networkx as nx

from gtm_container import GTMContainer, Issue
from gtm_quality_config import QualityConfig
from gtm_taxonomy import is_builtin_variable_name

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{([^{}]*?)\}\}')


@dataclass
class UsageGraph:
    referenced_names: Set[str] = field(default_factory=set)
    referenced_trigger_ids: Set[str] = field(default_factory=set)
    graph: nx.DiGraph = field(default_factory=nx.DiGraph)

    def referrers(self, name: str) -> List[Tuple[str, str]]:
        """(entity_type, entity_id) pairs whose values contain {{name}}"""
        node = name_node(name)
        if node not in self.graph:
            return []
        found = []
        for source in self.graph.predecessors(node):
            data = self.graph.nodes[source]
            found.append((data.get('entity_type'), data.get('entity_id')))
        return found

    def tags_using_trigger(self, trigger_id: str, kind: str = 'firing') -> List[str]:
        node = entity_node('trigger', trigger_id)
        if node not in self.graph:
            return []
        tag_ids = []
        for source in self.graph.predecessors(node):
            edge = self.graph.edges[source, node]
            if kind in edge.get('kinds', ()) and self.graph.nodes[source].get('entity_type') == 'tag':
                tag_ids.append(self.graph.nodes[source]['entity_id'])
        return tag_ids

    def summary(self) -> Dict:
        return {
            'referenced_names': sorted(self.referenced_names),
            'referenced_trigger_ids': sorted(self.referenced_trigger_ids),
            'nodes': self.graph.number_of_nodes(),
            'edges': self.graph.number_of_edges(),
        }


def entity_node(entity_type: str, entity_id: str) -> str:
    return f'{entity_type}:{entity_id}'


def name_node(name: str) -> str:
    return f'name:{name}'


def extract_placeholders(value: str) -> Set[str]:
    """Extract trimmed variable names from a string (e.g. {{ Page URL }})"""
    names = set()
    for match in PLACEHOLDER_PATTERN.findall(value):
        name = match.strip()
        if name:
            names.add(name)
    return names


def collect_placeholders(obj, max_depth: int = 50, _depth: int = 0) -> Set[str]:
    """Recursively find all placeholders in any object (dict, list, or string)"""
    references = set()

    if _depth > max_depth:
        logger.debug('Stopped placeholder scan at depth %d', _depth)
        return references

    if isinstance(obj, str):
        references.update(extract_placeholders(obj))
    elif isinstance(obj, dict):
        for value in obj.values():
            references.update(collect_placeholders(value, max_depth, _depth + 1))
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            references.update(collect_placeholders(item, max_depth, _depth + 1))

    return references


def _add_edge(graph: nx.DiGraph, source: str, target: str, kind: str):
    if graph.has_edge(source, target):
        kinds = graph.edges[source, target]['kinds']
        if kind not in kinds:
            kinds.append(kind)
    else:
        graph.add_edge(source, target, kinds=[kind])


def build_usage_graph(container: GTMContainer, config: QualityConfig = None) -> UsageGraph:
    """Walk every tag, trigger and variable and collect what they reference"""
    config = config or QualityConfig()
    usage = UsageGraph()
    graph = usage.graph

    components = [
        ('tag', [(tag.tag_id, tag.name, tag.raw) for tag in container.tags]),
        ('trigger', [(trigger.trigger_id, trigger.name, trigger.raw) for trigger in container.triggers]),
        ('variable', [(var.variable_id, var.name, var.raw) for var in container.variables]),
    ]

    for entity_type, entities in components:
        for entity_id, name, raw in entities:
            node = entity_node(entity_type, entity_id)
            graph.add_node(node, entity_type=entity_type, entity_id=entity_id, name=name)

            # Self-references count as usage, the scan is purely textual
            for ref in sorted(collect_placeholders(raw, config.max_parameter_depth)):
                usage.referenced_names.add(ref)
                graph.add_node(name_node(ref), entity_type='name', name=ref)
                _add_edge(graph, node, name_node(ref), 'placeholder')

    for tag in container.tags:
        source = entity_node('tag', tag.tag_id)
        for kind, trigger_ids in (('firing', tag.firing_trigger_ids), ('blocking', tag.blocking_trigger_ids)):
            for trigger_id in trigger_ids:
                usage.referenced_trigger_ids.add(trigger_id)
                target = entity_node('trigger', trigger_id)
                if target not in graph:
                    graph.add_node(target, entity_type='trigger', entity_id=trigger_id, name=None)
                _add_edge(graph, source, target, kind)

    for trigger in container.triggers:
        source = entity_node('trigger', trigger.trigger_id)
        for member_id in trigger.group_trigger_ids:
            usage.referenced_trigger_ids.add(member_id)
            target = entity_node('trigger', member_id)
            if target not in graph:
                graph.add_node(target, entity_type='trigger', entity_id=member_id, name=None)
            _add_edge(graph, source, target, 'group')

    usage.referenced_names.update(usage.referenced_trigger_ids)

    logger.debug('Usage graph: %d names, %d trigger ids, %d nodes',
                 len(usage.referenced_names), len(usage.referenced_trigger_ids),
                 graph.number_of_nodes())
    return usage


def unresolved_reference_issues(container: GTMContainer, usage: UsageGraph) -> List[Issue]:
    """Placeholders that point at no variable, built-in or internal name"""
    known = set(container.variable_names())
    enabled_builtins = set(container.builtin_variable_names)
    names = {}
    for entity_type, entities in (('tag', container.tags), ('trigger', container.triggers),
                                  ('variable', container.variables)):
        for entity in entities:
            names[(entity_type, _id_of(entity_type, entity))] = entity.name

    issues = []
    placeholder_names = sorted(
        node_data['name'] for _, node_data in usage.graph.nodes(data=True)
        if node_data.get('entity_type') == 'name'
    )
    for ref in placeholder_names:
        if ref in known or ref.startswith('_') or is_builtin_variable_name(ref, enabled_builtins):
            continue
        for entity_type, entity_id in usage.referrers(ref):
            issues.append(Issue(
                entity_id=entity_id,
                entity_type=entity_type,
                name=names.get((entity_type, entity_id), ''),
                categories=['unresolved_reference'],
                severity='minor',
                reason=f'References {{{{{ref}}}}}, which matches no variable in the container',
                suggestion='Create the variable, enable the built-in, or fix the reference name',
                meta={'reference': ref},
            ))
    return issues


def _id_of(entity_type: str, entity) -> str:
    if entity_type == 'tag':
        return entity.tag_id
    if entity_type == 'trigger':
        return entity.trigger_id
    return entity.variable_id
