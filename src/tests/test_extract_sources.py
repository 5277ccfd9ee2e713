import json

import pytest

from scancore.engine.errors import InvalidInput
from scancore.utils.extract_sources import extract_sources

TOKEN = "pragma solidity ^0.8.0;\ncontract Token {}\n"
OWNABLE = "pragma solidity ^0.8.0;\nabstract contract Ownable {}\n"


def test_solidity_file_is_one_source():
    sources = extract_sources(TOKEN.encode("utf-8"), "Token.sol")
    assert len(sources) == 1
    assert sources[0].name == "Token.sol"
    assert sources[0].content == TOKEN


def test_standard_json_input_yields_one_source_per_file():
    bundle = {
        "language": "Solidity",
        "sources": {
            "contracts/Token.sol": {"content": TOKEN},
            "contracts/access/Ownable.sol": {"content": OWNABLE},
            "contracts/Empty.sol": {"content": "  "},
        },
        "settings": {"optimizer": {"enabled": True}},
    }
    sources = extract_sources(json.dumps(bundle).encode("utf-8"), "input.json")
    assert [s.name for s in sources] == ["contracts/Token.sol", "contracts/access/Ownable.sol"]


def test_explorer_wrapped_bundle():
    raw = "{" + json.dumps({"sources": {"Token.sol": {"content": TOKEN}}}) + "}"
    sources = extract_sources(raw, "verified.json")
    assert len(sources) == 1
    assert sources[0].content == TOKEN


def test_explorer_multi_file_map_without_sources_key():
    raw = json.dumps({"Token.sol": {"content": TOKEN}, "Ownable.sol": {"content": OWNABLE}})
    assert len(extract_sources(raw, "sources.json")) == 2


@pytest.mark.parametrize("raw, filename", [
    (b"contract X {}", "notes.txt"),
    (b"   \n", "Empty.sol"),
    (b"{not json", "bundle.json"),
    (b'{"sources": {"A.sol": {"content": ""}}}', "bundle.json"),
    (b"[1, 2]", "bundle.json"),
    (b"\xff\xfe\x00", "Binary.sol"),
    (b"contract X {}", ""),
])
def test_invalid_uploads(raw, filename):
    with pytest.raises(InvalidInput):
        extract_sources(raw, filename)
