from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple


ChainID = int

# Chain id used by legacy single-source configs; resolved via RPC at startup.
LEGACY_CHAIN_ID: ChainID = 0

DEFAULT_GLYPHS: Tuple[str, str, str, str, str] = (" ", "░", "▒", "▓", "█")


def _as_str(x: Any) -> str:
    if x is None:
        return ""
    return x if isinstance(x, str) else str(x)


@dataclass(frozen=True, slots=True)
class Palette:
    """
    Five text tokens ordered from lightest (index 0) to darkest (index 4).

    1-bit images only consult indices 0 and 1 (bit 0 -> tokens[0],
    bit 1 -> tokens[1]). Tokens are arbitrary strings and are concatenated
    verbatim, so multi-character or multi-byte tokens are fine.
    """
    tokens: Tuple[str, str, str, str, str] = DEFAULT_GLYPHS

    def __post_init__(self) -> None:
        toks = tuple(self.tokens)
        if len(toks) != 5:
            raise ValueError(f"palette needs exactly 5 tokens, got {len(toks)}")
        if not all(isinstance(t, str) for t in toks):
            raise TypeError("palette tokens must be str")
        object.__setattr__(self, "tokens", toks)

    def __getitem__(self, i: int) -> str:
        return self.tokens[i]

    def __len__(self) -> int:
        return 5

    @classmethod
    def with_overrides(cls, values: Sequence[Optional[str]]) -> "Palette":
        """Build a palette where missing entries (None/"") use the default glyph."""
        if len(values) != 5:
            raise ValueError("expected 5 palette values")
        toks = tuple(v if v else DEFAULT_GLYPHS[i] for i, v in enumerate(values))
        return cls(toks)  # type: ignore[arg-type]


DEFAULT_PALETTE = Palette()


@dataclass(slots=True)
class Attribute:
    trait_type: str
    value: Any


@dataclass(slots=True)
class TokenMetadata:
    """
    ERC-721 metadata document (the JSON behind tokenURI).

    Parsing is lenient: unknown keys are ignored and missing ones default to
    empty values, since contracts in the wild rarely follow the schema exactly.
    """
    name: str = ""
    description: str = ""
    image: str = ""
    external_url: str = ""
    attributes: List[Attribute] = field(default_factory=list)
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TokenMetadata":
        if not isinstance(d, dict):
            raise ValueError("metadata document must be a JSON object")
        attrs: List[Attribute] = []
        raw_attrs = d.get("attributes")
        for a in raw_attrs if isinstance(raw_attrs, list) else []:
            if isinstance(a, dict):
                attrs.append(Attribute(trait_type=_as_str(a.get("trait_type")), value=a.get("value")))
        props = d.get("properties")
        return cls(
            name=_as_str(d.get("name")),
            description=_as_str(d.get("description")),
            image=_as_str(d.get("image")),
            external_url=_as_str(d.get("external_url")),
            attributes=attrs,
            properties=dict(props) if isinstance(props, dict) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
