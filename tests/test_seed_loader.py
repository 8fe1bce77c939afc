"""Tests for loading seed contexts from YAML."""

import pytest
import yaml

from klever_mcp.contexts.seed import load_seed_file
from klever_mcp.errors import ValidationError


@pytest.mark.unit
def test_load_seed_file_mapping_form(tmp_path):
    seed = tmp_path / "seed.yaml"
    seed.write_text(
        """
contexts:
  - type: security_tip
    content: Never log private keys
    metadata:
      title: Key hygiene
      tags: [keys, logging]
""",
        encoding="utf-8",
    )

    payloads = load_seed_file(seed)

    assert payloads == [
        {
            "type": "security_tip",
            "content": "Never log private keys",
            "metadata": {"title": "Key hygiene", "tags": ["keys", "logging"]},
        }
    ]


@pytest.mark.unit
def test_load_seed_file_list_form(tmp_path):
    seed = tmp_path / "seed.yaml"
    seed.write_text(
        "- {type: documentation, content: a, metadata: {title: A}}\n"
        "- {type: documentation, content: b, metadata: {title: B}}\n",
        encoding="utf-8",
    )

    assert [p["content"] for p in load_seed_file(str(seed))] == ["a", "b"]


@pytest.mark.unit
def test_load_seed_file_empty_document(tmp_path):
    seed = tmp_path / "empty.yaml"
    seed.write_text("", encoding="utf-8")
    assert load_seed_file(seed) == []


@pytest.mark.unit
def test_load_seed_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_seed_file(tmp_path / "missing.yaml")


@pytest.mark.unit
def test_load_seed_file_wrong_shape(tmp_path):
    seed = tmp_path / "scalar.yaml"
    seed.write_text("just a string\n", encoding="utf-8")
    with pytest.raises(ValidationError, match="expected a list of contexts"):
        load_seed_file(seed)


@pytest.mark.unit
def test_load_seed_file_malformed_yaml(tmp_path):
    seed = tmp_path / "broken.yaml"
    seed.write_text("contexts: [unclosed\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_seed_file(seed)
