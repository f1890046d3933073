"""Cosine similarity ranking shared by the store implementations."""
from __future__ import annotations

from typing import List, Sequence

import numpy as np

from meetingbrain.agents.meeting.models import GraphNode, NodeMatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.size == 0 or vec_a.shape != vec_b.shape:
        return 0.0
    denom = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / denom)


def rank_nodes(
    query: Sequence[float],
    nodes: Sequence[GraphNode],
    *,
    match_count: int,
    threshold: float,
) -> List[NodeMatch]:
    """Return up to ``match_count`` nodes scoring strictly above ``threshold``.

    Ties keep the order of ``nodes`` (insertion order in both stores).
    """
    if match_count <= 0:
        return []
    query_vec = np.asarray(query, dtype=np.float64)
    if query_vec.ndim != 1 or query_vec.size == 0:
        return []
    query_norm = float(np.linalg.norm(query_vec))
    if query_norm == 0.0:
        return []

    candidates = [
        node for node in nodes if node.embedding is not None and len(node.embedding) == query_vec.size
    ]
    if not candidates:
        return []

    matrix = np.asarray([node.embedding for node in candidates], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * query_norm
    dots = matrix @ query_vec
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

    order = np.argsort(-scores, kind="stable")
    matches: List[NodeMatch] = []
    for idx in order:
        score = float(scores[idx])
        if score <= threshold:
            break
        node = candidates[int(idx)]
        matches.append(
            NodeMatch(
                id=str(node.id),
                user_id=node.user_id,
                node_type=node.node_type,
                title=node.title,
                content=node.content,
                source_meeting_id=node.source_meeting_id,
                similarity=score,
            )
        )
        if len(matches) >= match_count:
            break
    return matches
