# src/scancore/utils/extract_sources.py
import json
import os
from typing import Dict, List, Union

from scancore.engine.errors import InvalidInput
from scancore.engine.source import SourceRef

SUPPORTED_EXTENSIONS = (".sol", ".json")


def _decode(raw: Union[bytes, str], filename: str) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidInput(f"{filename} is not UTF-8 text: {e}")


def _load_json_sources(text: str) -> Dict[str, str]:
    text = text.strip()
    # block explorers return multi-file sources wrapped in an extra pair of braces
    if text.startswith("{{") and text.endswith("}}"):
        text = text[1:-1]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidInput(f"Invalid JSON source bundle: {e}")
    if not isinstance(data, dict):
        raise InvalidInput("JSON source bundle must be an object")

    sources = data.get("sources", data)
    if not isinstance(sources, dict):
        raise InvalidInput("JSON source bundle has no 'sources' mapping")
    units = {}
    for path, entry in sources.items():
        content = entry.get("content") if isinstance(entry, dict) else None
        if isinstance(content, str) and content.strip():
            units[path] = content
    if not units:
        raise InvalidInput("JSON source bundle contains no contract sources")
    return units


def extract_sources(raw: Union[bytes, str], filename: str) -> List[SourceRef]:
    """
    Split an uploaded file into the contract sources to scan.
    A .sol file is one source; a solc standard-input or explorer .json bundle
    yields one source per file it contains.
    """
    filename = os.path.basename(filename or "")
    if not filename:
        raise InvalidInput("Uploaded file has no name")
    lowered = filename.lower()
    if not lowered.endswith(SUPPORTED_EXTENSIONS):
        raise InvalidInput(f"Unsupported file type: {filename}. Expected one of {', '.join(SUPPORTED_EXTENSIONS)}")

    text = _decode(raw, filename)
    if not text.strip():
        raise InvalidInput(f"{filename} is empty")
    if lowered.endswith(".sol"):
        return [SourceRef.from_content(text, filename=filename)]
    return [SourceRef.from_content(content, filename=path) for path, content in _load_json_sources(text).items()]
