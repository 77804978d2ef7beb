from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, List, Optional

from models import DiagnosticResult, Topic

logger = logging.getLogger(__name__)

WEAK_AREA_BONUS = 3
MISSED_QUESTION_BONUS = 2
RECOMMENDED_FOCUS_BONUS = 4


def compute_topic_priorities(
    topics: List[Topic],
    diagnostic: Optional[DiagnosticResult] = None,
) -> Dict[str, int]:
    priorities = {t.topic_id: t.importance for t in topics}
    if diagnostic is None or not diagnostic.is_usable:
        return priorities

    weak_areas = set(diagnostic.weak_areas)
    missed = Counter(diagnostic.missed_topic_ids)
    focus = set(diagnostic.recommended_focus)
    for topic in topics:
        if topic.category in weak_areas:
            priorities[topic.topic_id] += WEAK_AREA_BONUS
        priorities[topic.topic_id] += MISSED_QUESTION_BONUS * missed.get(topic.topic_id, 0)
        if topic.topic_id in focus:
            priorities[topic.topic_id] += RECOMMENDED_FOCUS_BONUS
    return priorities


class TopicGraph:
    """Prerequisite graph over the topic catalog with priority-aware ordering."""

    def __init__(self, topics: List[Topic], diagnostic: Optional[DiagnosticResult] = None):
        self.topics = list(topics)
        self.by_id: Dict[str, Topic] = {t.topic_id: t for t in self.topics}
        self.priorities = compute_topic_priorities(self.topics, diagnostic)
        # catalog position keeps equal priorities stable
        self._position = {t.topic_id: i for i, t in enumerate(self.topics)}

    def _by_priority(self, topic_ids: List[str]) -> List[str]:
        return sorted(topic_ids, key=lambda tid: (-self.priorities[tid], self._position[tid]))

    def find_missing_prerequisites(self) -> Dict[str, List[str]]:
        missing: Dict[str, List[str]] = {}
        for topic in self.topics:
            unknown = [p for p in topic.prerequisites if p not in self.by_id]
            if unknown:
                missing[topic.topic_id] = unknown
        return missing

    def known_prerequisites(self, topic_id: str) -> List[str]:
        topic = self.by_id[topic_id]
        return [p for p in topic.prerequisites if p in self.by_id and p != topic_id]

    def ordered_topics(self) -> List[Topic]:
        """Topological order: every topic comes after its prerequisites.

        Roots are taken in descending priority and prerequisites are visited in
        descending priority too, so among independent topics the more important
        one is studied first.
        """
        for topic_id, unknown in self.find_missing_prerequisites().items():
            logger.warning("Topic %s references unknown prerequisites %s; ignoring them", topic_id, unknown)

        visited = set()
        order: List[Topic] = []
        for root in self._by_priority(list(self.by_id)):
            if root in visited:
                continue
            on_path = {root}
            visited.add(root)
            stack = [(root, iter(self._by_priority(self.known_prerequisites(root))))]
            while stack:
                node, children = stack[-1]
                advanced = False
                for child in children:
                    if child in on_path:
                        logger.warning("Prerequisite cycle between %s and %s; breaking it", node, child)
                        continue
                    if child in visited:
                        continue
                    visited.add(child)
                    on_path.add(child)
                    stack.append((child, iter(self._by_priority(self.known_prerequisites(child)))))
                    advanced = True
                    break
                if not advanced:
                    stack.pop()
                    on_path.discard(node)
                    order.append(self.by_id[node])
        return order
