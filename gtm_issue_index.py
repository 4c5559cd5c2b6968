#!/usr/bin/env python3
"""
GTM Issue Index
Lookup tables over the merged issue list for filtering in the report.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Set

from gtm_container import Issue


@dataclass
class IssueIndex:
    by_category: Dict[str, Set[str]] = field(default_factory=OrderedDict)
    by_id: Dict[str, List[Issue]] = field(default_factory=OrderedDict)
    counters: Dict[str, int] = field(default_factory=OrderedDict)

    def has(self, category: str, entity_id: str) -> bool:
        return entity_id in self.by_category.get(category, ())

    def issues_for(self, entity_id: str, entity_type: str = None) -> List[Issue]:
        issues = self.by_id.get(entity_id, [])
        if entity_type is None:
            return list(issues)
        return [issue for issue in issues if issue.entity_type == entity_type]

    def all_issues(self) -> List[Issue]:
        return [issue for issues in self.by_id.values() for issue in issues]

    def to_dict(self) -> Dict:
        return {
            'by_category': {category: sorted(ids) for category, ids in self.by_category.items()},
            'by_id': {entity_id: [issue.to_dict() for issue in issues]
                      for entity_id, issues in self.by_id.items()},
            'counters': dict(self.counters),
        }


def build_issue_index(issues: List[Issue]) -> IssueIndex:
    """Index issues by category and by entity id, keeping insertion order"""
    index = IssueIndex()
    for issue in issues:
        index.by_id.setdefault(issue.entity_id, []).append(issue)
        for category in issue.categories:
            index.by_category.setdefault(category, set()).add(issue.entity_id)
            index.counters[category] = index.counters.get(category, 0) + 1
    return index
