"""
Shape template matching.

Scores a traced outline against a library of saved templates (named
shapes from earlier orders) using cheap global descriptors. A strong match
lets the pipeline name an item ("Drill", "Headphones") without asking.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence

import numpy as np
from shapely.geometry import Polygon

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 30
RENAME_CONFIDENCE = 70
MAX_MATCHES = 3


@dataclass
class ShapeTemplate:
    id: str
    name: str
    points: np.ndarray
    category: str = "other"

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 2)

    @property
    def point_count(self) -> int:
        return len(self.points)

    @property
    def aspect_ratio(self) -> float:
        return aspect_ratio(self.points)


@dataclass
class TemplateMatch:
    template: ShapeTemplate
    confidence: int
    reasons: List[str] = field(default_factory=list)

    @property
    def match_type(self) -> str:
        return ", ".join(self.reasons)


# ─── Descriptors ─────────────────────────────────────────────────────────────

def aspect_ratio(points: np.ndarray) -> float:
    """Bounding-box width / height; 1 for degenerate input."""
    if len(points) < 3:
        return 1.0
    span = points.max(axis=0) - points.min(axis=0)
    return float(span[0] / span[1]) if span[1] > 0 else 1.0


def complexity(points: np.ndarray) -> float:
    """Perimeter / sqrt(area). A circle scores about 3.54, a square 4."""
    if len(points) < 3:
        return 0.0
    poly = Polygon(points)
    area = abs(poly.area)
    return float(poly.exterior.length / math.sqrt(area)) if area > 0 else 0.0


def fill_ratio(points: np.ndarray) -> float:
    """Share of the bounding box covered by the shape."""
    if len(points) < 3:
        return 0.0
    span = points.max(axis=0) - points.min(axis=0)
    box_area = span[0] * span[1]
    return float(abs(Polygon(points).area) / box_area) if box_area > 0 else 0.0


# ─── Matching ────────────────────────────────────────────────────────────────

def score_template(points: np.ndarray, template: ShapeTemplate) -> TemplateMatch:
    """Weighted similarity, 0-100, across four descriptors."""
    confidence = 0.0
    reasons: List[str] = []

    aspect_score = max(0.0, 1 - abs(aspect_ratio(points) - template.aspect_ratio) / 2)
    if aspect_score > 0.7:
        confidence += aspect_score * 40
        reasons.append("aspect_ratio")

    complexity_score = max(0.0, 1 - abs(complexity(points) - complexity(template.points)) / 10)
    if complexity_score > 0.5:
        confidence += complexity_score * 30
        reasons.append("complexity")

    fill_score = max(0.0, 1 - abs(fill_ratio(points) - fill_ratio(template.points)) / 0.5)
    if fill_score > 0.5:
        confidence += fill_score * 20
        reasons.append("fill_ratio")

    counts = (len(points), template.point_count)
    point_ratio = min(counts) / max(counts) if max(counts) > 0 else 0.0
    if point_ratio > 0.5:
        confidence += point_ratio * 10
        reasons.append("point_count")

    return TemplateMatch(template, int(math.floor(confidence + 0.5)), reasons)


def match_shape(
    points: np.ndarray,
    templates: Sequence[ShapeTemplate],
    limit: int = MAX_MATCHES,
) -> List[TemplateMatch]:
    """Templates scoring above MIN_CONFIDENCE, best first."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    matches = [score_template(pts, t) for t in templates]
    matches = [m for m in matches if m.confidence > MIN_CONFIDENCE]
    matches.sort(key=lambda m: m.confidence, reverse=True)
    return matches[:limit]


def best_name(points: np.ndarray, templates: Sequence[ShapeTemplate], fallback: str) -> str:
    """Template name when the top match is confident enough, else *fallback*."""
    matches = match_shape(points, templates, limit=1)
    if matches and matches[0].confidence > RENAME_CONFIDENCE:
        logger.debug("Matched %r (%d%%)", matches[0].template.name, matches[0].confidence)
        return matches[0].template.name
    return fallback


def load_templates(path) -> List[ShapeTemplate]:
    """Read a JSON list of ``{id, name, points, category?}`` records."""
    with Path(path).open("r", encoding="utf-8") as f:
        records: List[Dict] = json.load(f)
    templates = [
        ShapeTemplate(
            id=str(r["id"]),
            name=str(r["name"]),
            points=np.array(r["points"], dtype=np.float64),
            category=r.get("category", "other"),
        )
        for r in records
    ]
    logger.info("Loaded %d shape templates from %s", len(templates), path)
    return templates
