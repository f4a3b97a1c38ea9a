"""
Prompt templates in the ChatML format used by Qwen models.

The fixed prefix is a closed system turn describing the artwork. A user turn
is closed and followed by an open assistant marker, so generation continues
from there.
"""

from ..protocol.messages import ArtworkMetadata, Role

IM_START = "<|im_start|>"
IM_END = "<|im_end|>"

# (label, field) in render order; ``school`` is carried but not rendered
_ARTWORK_FIELDS = (
    ("Title", "title"),
    ("Object Date", "date"),
    ("Artist Display Name", "author"),
    ("Medium", "technique"),
    ("Type", "type"),
    ("Description", "description"),
)


def _open_turn(role: Role) -> str:
    return f"{IM_START}{role.value}\n"


def format_artwork_info(metadata: ArtworkMetadata) -> str:
    """Render the non-empty artwork fields as an info block."""
    lines = ["[ARTWORK INFO]\n\n"]
    for label, name in _ARTWORK_FIELDS:
        value = getattr(metadata, name)
        if value:
            lines.append(f"{label}: {value}\n")
    lines.append("\n")
    return "".join(lines)


def format_fixed_prefix(metadata: ArtworkMetadata | dict | None = None) -> str:
    """Build the system turn cached as the fixed prefix."""
    if metadata is None:
        metadata = ArtworkMetadata()
    elif isinstance(metadata, dict):
        metadata = ArtworkMetadata.model_validate(metadata)
    return f"{_open_turn(Role.SYSTEM)}{format_artwork_info(metadata)}{IM_END}\n"


def format_user_turn(question: str) -> str:
    """Wrap a question in a user turn followed by an open assistant turn."""
    return (
        f"{_open_turn(Role.USER)}[QUESTION]\n\n{question}\n{IM_END}\n"
        f"{IM_START}{Role.ASSISTANT.value}"
    )
