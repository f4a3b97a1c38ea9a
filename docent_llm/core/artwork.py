"""Artwork metadata loading from JSON files."""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from ..protocol.messages import ArtworkMetadata

logger = logging.getLogger(__name__)


def load_artwork_metadata(path: str | Path, title: str | None = None) -> ArtworkMetadata:
    """
    Load artwork metadata from a JSON file.

    The file holds either one artwork object or a list of them. With a list,
    ``title`` selects the entry (the first entry when omitted). Unknown keys
    are ignored and non-string values are stringified.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the JSON is malformed or no entry matches ``title``
    """
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid artwork JSON in {path}: {e}") from e

    entries = data if isinstance(data, list) else [data]
    if not entries:
        raise ValueError(f"No artworks in {path}")

    if title is None:
        entry = entries[0]
    else:
        matches = [e for e in entries if isinstance(e, dict) and e.get("title") == title]
        if not matches:
            raise ValueError(f"Artwork '{title}' not found in {path}")
        entry = matches[0]

    if not isinstance(entry, dict):
        raise ValueError(f"Artwork entry in {path} is not an object")

    fields = {
        name: "" if entry.get(name) is None else str(entry[name])
        for name in ArtworkMetadata.model_fields
        if name in entry
    }
    try:
        metadata = ArtworkMetadata(**fields)
    except ValidationError as e:
        raise ValueError(f"Invalid artwork entry in {path}: {e}") from e

    logger.info(f"Loaded artwork metadata: {metadata.title or '<untitled>'}")
    return metadata
