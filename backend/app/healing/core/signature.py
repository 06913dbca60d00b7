"""
Element Signature

Immutable multi-attribute fingerprint of an element as it was last seen,
plus the similarity scorer that decides whether a freshly located element
is "the same" element.

A signature is captured at registration and at every re-inspection. Two
signatures with equal signature_hash() are the same logical element.

Similarity is a weighted mean of six factors. A factor only contributes
when both signatures carry the data it needs; otherwise it is left out of
both the numerator and the denominator.
"""

import json
import hashlib
import logging
from datetime import datetime
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Any, Optional, Tuple, Mapping

# Configure logging
logger = logging.getLogger(__name__)


# ==================== Factor Weights ====================

TAG_WEIGHT = 0.25
TEXT_WEIGHT = 0.20
ATTRIBUTE_WEIGHT = 0.25
POSITION_WEIGHT = 0.10
STRUCTURE_WEIGHT = 0.10
STYLE_WEIGHT = 0.10

# Pixels of drift after which position similarity reaches zero
POSITION_FALLOFF_PX = 100.0
# Levels/children of drift after which structural similarity reaches zero
STRUCTURE_FALLOFF = 10.0
# Position drift reported by detect_changes
POSITION_CHANGE_PX = 10.0
# Longest text kept on a signature; keeps text comparison cheap
TEXT_CAPTURE_LIMIT = 200

# Computed styles compared by similarity()
COMPARED_STYLES = ("display", "visibility", "opacity", "fontSize", "color")
# Bounded subset of computed styles kept on a signature
TRACKED_STYLES = COMPARED_STYLES + ("position", "zIndex", "animationName", "transitionDuration")


# ==================== Signature Parts ====================

@dataclass(frozen=True)
class Position:
    """Bounding rectangle in CSS pixels"""
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True)
class ShadowDomInfo:
    """Shadow root attached to the element, if any"""
    has_shadow_root: bool = False
    mode: Optional[str] = None
    child_element_count: int = 0
    in_shadow_tree: bool = False


@dataclass(frozen=True)
class AriaRelationships:
    """ARIA role, label and relationship attributes"""
    role: Optional[str] = None
    label: Optional[str] = None
    labelled_by: Optional[str] = None
    described_by: Optional[str] = None
    controls: Optional[str] = None
    owns: Optional[str] = None
    expanded: Optional[str] = None
    selected: Optional[str] = None
    checked: Optional[str] = None
    disabled: Optional[str] = None
    hidden: Optional[str] = None


@dataclass(frozen=True)
class StructuralInfo:
    """Where the element sits in the DOM tree"""
    depth: Optional[int] = None
    children_count: Optional[int] = None
    is_interactive: bool = False
    is_visible: bool = True
    sibling_index: Optional[int] = None  # 1-based position among the parent's element children


@dataclass(frozen=True)
class FormInfo:
    """Form facts for form controls"""
    name: Optional[str] = None
    input_type: Optional[str] = None
    placeholder: Optional[str] = None
    form_id: Optional[str] = None
    disabled: bool = False
    required: bool = False
    readonly: bool = False
    valid: bool = True


# ==================== Element Signature ====================

@dataclass(frozen=True)
class ElementSignature:
    """
    Snapshot of an element's identity.

    text_content is None when the text was not captured; an empty string
    means the element was inspected and has no text. The same applies to
    attributes.

    Mapping fields are stored as read-only views, so a signature and its
    signature_hash() never change after capture.
    """
    tag_name: str
    text_content: Optional[str] = None
    attributes: Optional[Mapping[str, str]] = None
    position: Optional[Position] = None
    parent_tag: Optional[str] = None
    siblings_count: int = 0
    computed_styles: Mapping[str, str] = field(default_factory=dict)
    shadow_dom: Optional[ShadowDomInfo] = None
    aria: AriaRelationships = field(default_factory=AriaRelationships)
    structure: StructuralInfo = field(default_factory=StructuralInfo)
    form: Optional[FormInfo] = None
    pseudo_elements: Mapping[str, str] = field(default_factory=dict)  # "before"/"after" -> content
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    confidence_score: float = 1.0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.attributes is not None:
            object.__setattr__(self, "attributes", _frozen(self.attributes))
        for name in ("computed_styles", "pseudo_elements", "metadata"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    def attribute(self, name: str) -> Optional[str]:
        """Return an attribute value, None when absent or not captured"""
        if not self.attributes:
            return None
        return self.attributes.get(name)

    @property
    def classes(self) -> List[str]:
        return [c for c in (self.attribute("class") or "").split() if c]

    def signature_hash(self) -> str:
        """
        Stable identity hash over tag, text, attributes and parent tag.

        Returns:
            Hex MD5 digest
        """
        canonical = json.dumps(
            {
                "tag": self.tag_name,
                "text": self.text_content,
                "attributes": dict(self.attributes) if self.attributes is not None else None,
                "parent": self.parent_tag,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()

    def __hash__(self):
        return hash(self.signature_hash())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag_name": self.tag_name,
            "text_content": self.text_content,
            "attributes": dict(self.attributes) if self.attributes is not None else None,
            "position": (
                {
                    "x": self.position.x,
                    "y": self.position.y,
                    "width": self.position.width,
                    "height": self.position.height,
                }
                if self.position
                else None
            ),
            "parent_tag": self.parent_tag,
            "siblings_count": self.siblings_count,
            "computed_styles": dict(self.computed_styles),
            "has_shadow_root": bool(self.shadow_dom and self.shadow_dom.has_shadow_root),
            "role": self.aria.role,
            "depth": self.structure.depth,
            "children_count": self.structure.children_count,
            "is_interactive": self.structure.is_interactive,
            "is_visible": self.structure.is_visible,
            "form_id": self.form.form_id if self.form else None,
            "pseudo_elements": dict(self.pseudo_elements),
            "timestamp": self.timestamp,
            "confidence_score": self.confidence_score,
            "signature_hash": self.signature_hash(),
        }


def _frozen(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def capture(fields: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> ElementSignature:
    """
    Build a signature from the facts a probe reported.

    Args:
        fields: Dict produced by Probe.inspect()
        metadata: Free-form registration metadata to attach

    Returns:
        ElementSignature
    """
    if not fields or not fields.get("tag_name"):
        raise ValueError("Cannot capture a signature without tag_name")

    attributes = fields.get("attributes")
    if attributes is not None:
        attributes = {str(k): str(v) for k, v in attributes.items()}

    position = None
    raw_position = fields.get("position")
    if raw_position and raw_position.get("x") is not None and raw_position.get("y") is not None:
        position = Position(
            x=float(raw_position["x"]),
            y=float(raw_position["y"]),
            width=float(raw_position.get("width") or 0.0),
            height=float(raw_position.get("height") or 0.0),
        )

    raw_styles = fields.get("computed_styles") or {}
    computed_styles = {k: str(raw_styles[k]) for k in TRACKED_STYLES if raw_styles.get(k) is not None}

    shadow_dom = None
    raw_shadow = fields.get("shadow_dom")
    if raw_shadow:
        shadow_dom = ShadowDomInfo(
            has_shadow_root=bool(raw_shadow.get("has_shadow_root")),
            mode=raw_shadow.get("mode"),
            child_element_count=int(raw_shadow.get("child_element_count") or 0),
            in_shadow_tree=bool(raw_shadow.get("in_shadow_tree")),
        )

    raw_aria = fields.get("aria") or {}
    aria = AriaRelationships(
        role=raw_aria.get("role"),
        label=raw_aria.get("label"),
        labelled_by=raw_aria.get("labelled_by"),
        described_by=raw_aria.get("described_by"),
        controls=raw_aria.get("controls"),
        owns=raw_aria.get("owns"),
        expanded=raw_aria.get("expanded"),
        selected=raw_aria.get("selected"),
        checked=raw_aria.get("checked"),
        disabled=raw_aria.get("disabled"),
        hidden=raw_aria.get("hidden"),
    )

    raw_structure = fields.get("structure") or {}
    structure = StructuralInfo(
        depth=_optional_int(raw_structure.get("depth")),
        children_count=_optional_int(raw_structure.get("children_count")),
        is_interactive=bool(raw_structure.get("is_interactive", False)),
        is_visible=bool(raw_structure.get("is_visible", True)),
        sibling_index=_optional_int(raw_structure.get("sibling_index")),
    )

    form = None
    raw_form = fields.get("form")
    if raw_form:
        form = FormInfo(
            name=raw_form.get("name"),
            input_type=raw_form.get("input_type"),
            placeholder=raw_form.get("placeholder"),
            form_id=raw_form.get("form_id"),
            disabled=bool(raw_form.get("disabled", False)),
            required=bool(raw_form.get("required", False)),
            readonly=bool(raw_form.get("readonly", False)),
            valid=bool(raw_form.get("valid", True)),
        )

    pseudo_elements = {
        str(k): str(v) for k, v in (fields.get("pseudo_elements") or {}).items() if v
    }

    merged_metadata = dict(fields.get("metadata") or {})
    if metadata:
        merged_metadata.update(metadata)

    text_content = fields.get("text_content")
    if text_content is not None:
        text_content = str(text_content)[:TEXT_CAPTURE_LIMIT]

    return ElementSignature(
        tag_name=str(fields["tag_name"]).lower(),
        text_content=text_content,
        attributes=attributes,
        position=position,
        parent_tag=(fields.get("parent_tag") or None) and str(fields["parent_tag"]).lower(),
        siblings_count=int(fields.get("siblings_count") or 0),
        computed_styles=computed_styles,
        shadow_dom=shadow_dom,
        aria=aria,
        structure=structure,
        form=form,
        pseudo_elements=pseudo_elements,
        timestamp=fields.get("timestamp") or datetime.utcnow().isoformat(),
        confidence_score=float(fields.get("confidence_score", 1.0)),
        metadata=merged_metadata,
    )


# ==================== Similarity ====================

def levenshtein_distance(s1: str, s2: str) -> int:
    """Edit distance between two strings"""
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, 1):
        current = [i]
        for j, c2 in enumerate(s2, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (c1 != c2),
            ))
        previous = current
    return previous[-1]


def text_similarity(t1: str, t2: str) -> float:
    longest = max(len(t1), len(t2))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(t1, t2) / longest


def attribute_similarity(a1: Dict[str, str], a2: Dict[str, str]) -> float:
    keys = set(a1) | set(a2)
    if not keys:
        return 1.0
    matches = sum(1 for k in keys if k in a1 and k in a2 and a1[k] == a2[k])
    return matches / len(keys)


def position_similarity(p1: Position, p2: Position) -> float:
    sx = max(0.0, 1.0 - abs(p1.x - p2.x) / POSITION_FALLOFF_PX)
    sy = max(0.0, 1.0 - abs(p1.y - p2.y) / POSITION_FALLOFF_PX)
    return (sx + sy) / 2


def structure_similarity(s1: StructuralInfo, s2: StructuralInfo) -> Optional[float]:
    """Depth and children-count proximity; None when neither fact is on both sides"""
    scores = []
    if s1.depth is not None and s2.depth is not None:
        scores.append(max(0.0, 1.0 - abs(s1.depth - s2.depth) / STRUCTURE_FALLOFF))
    if s1.children_count is not None and s2.children_count is not None:
        scores.append(max(0.0, 1.0 - abs(s1.children_count - s2.children_count) / STRUCTURE_FALLOFF))
    if not scores:
        return None
    return sum(scores) / len(scores)


def style_similarity(st1: Dict[str, str], st2: Dict[str, str]) -> Optional[float]:
    shared = [k for k in COMPARED_STYLES if k in st1 and k in st2]
    if not shared:
        return None
    return sum(1 for k in shared if st1[k] == st2[k]) / len(shared)


def similarity_breakdown(a: ElementSignature, b: ElementSignature) -> List[Tuple[str, float, float]]:
    """
    Per-factor scores for the factors both signatures support.

    Returns:
        List of (factor, weight, score) in fixed factor order
    """
    factors = [("tag", TAG_WEIGHT, 1.0 if a.tag_name == b.tag_name else 0.0)]

    if a.text_content is not None and b.text_content is not None:
        factors.append(("text", TEXT_WEIGHT, text_similarity(a.text_content, b.text_content)))

    if a.attributes is not None and b.attributes is not None:
        factors.append(("attributes", ATTRIBUTE_WEIGHT, attribute_similarity(a.attributes, b.attributes)))

    if a.position is not None and b.position is not None:
        factors.append(("position", POSITION_WEIGHT, position_similarity(a.position, b.position)))

    structure = structure_similarity(a.structure, b.structure)
    if structure is not None:
        factors.append(("structure", STRUCTURE_WEIGHT, structure))

    styles = style_similarity(a.computed_styles, b.computed_styles)
    if styles is not None:
        factors.append(("styles", STYLE_WEIGHT, styles))

    return factors


def similarity(a: ElementSignature, b: ElementSignature) -> float:
    """
    Weighted similarity of two signatures.

    Pure and symmetric; similarity(a, a) == 1.0.

    Returns:
        Score in [0, 1]
    """
    numerator = 0.0
    denominator = 0.0
    for _, weight, score in similarity_breakdown(a, b):
        numerator += weight * score
        denominator += weight

    if denominator == 0:
        return 0.0
    return numerator / denominator


def detect_changes(old: ElementSignature, new: ElementSignature) -> List[Dict[str, Any]]:
    """
    List the visible differences between two captures of an element.

    Returns:
        List of change dicts with type, old and new values
    """
    changes = []

    if old.tag_name != new.tag_name:
        changes.append({"type": "tag", "old": old.tag_name, "new": new.tag_name})

    if old.text_content != new.text_content:
        changes.append({"type": "text", "old": old.text_content, "new": new.text_content})

    old_attrs = old.attributes or {}
    new_attrs = new.attributes or {}
    for key in sorted(set(old_attrs) | set(new_attrs)):
        if old_attrs.get(key) != new_attrs.get(key):
            changes.append({
                "type": "attribute",
                "attribute": key,
                "old": old_attrs.get(key),
                "new": new_attrs.get(key),
            })

    if old.position and new.position:
        if (abs(old.position.x - new.position.x) > POSITION_CHANGE_PX or
                abs(old.position.y - new.position.y) > POSITION_CHANGE_PX):
            changes.append({
                "type": "position",
                "old": {"x": old.position.x, "y": old.position.y},
                "new": {"x": new.position.x, "y": new.position.y},
            })

    return changes
