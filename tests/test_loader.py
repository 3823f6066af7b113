"""Tests for knowledge base file loading and reload."""
import json

import pytest

from app.config import Settings
from app.errors import ConfigError, ValidationError
from app.knowledge import KnowledgeBaseProvider
from app.loader import ConfigLoader, load_knowledge_base


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def kb_file(tmp_path, hours_entries):
    return write_json(tmp_path / "kb.json", hours_entries)


def test_load_json_list(kb_file):
    kb, options = load_knowledge_base(kb_file)

    assert [e.id for e in kb] == ["E1", "E2"]
    assert kb.lookup("E1").follow_up_prompt_ids == ("E2",)
    assert kb.lookup("E1").source == "kb.json"
    assert options == {}


def test_load_json_entries_with_threshold(tmp_path, hours_entries):
    path = write_json(tmp_path / "kb.json", {"min_confidence": 0.8, "entries": hours_entries})

    kb, options = load_knowledge_base(path)

    assert len(kb) == 2
    assert options == {"min_confidence": 0.8}


def test_load_qna_export(tmp_path):
    path = write_json(tmp_path / "export.json", {
        "qnaDocuments": [
            {
                "id": 1,
                "answer": "We are open 9-5.",
                "questions": ["What are your hours?", "When are you open?"],
                "metadata": [{"name": "category", "value": "hours"}],
                "context": {"isContextOnly": False, "prompts": [{"displayOrder": 0, "qnaId": 2, "displayText": "Weekends?"}]},
            },
            {
                "id": 2,
                "answer": "Closed on weekends.",
                "questions": ["Are you open on weekends?"],
                "metadata": [],
                "context": {"isContextOnly": True, "prompts": []},
            },
        ]
    })

    kb, _ = load_knowledge_base(path)

    first = kb.lookup("1")
    assert first.follow_up_prompt_ids == ("2",)
    assert first.metadata == {"category": "hours"}
    assert first.questions == ("What are your hours?", "When are you open?")
    assert kb.lookup("2").follow_up_prompt_ids == ()


def test_load_jsonl(tmp_path):
    path = tmp_path / "kb.jsonl"
    path.write_text(
        '{"id": "a", "questions": ["parking"], "answer": "Lot B", "follow_ups": ["b"]}\n'
        "\n"
        '{"id": "b", "question": "parking fees", "answer": "Free"}\n',
        encoding="utf-8",
    )

    kb, _ = load_knowledge_base(str(path))

    assert [e.id for e in kb] == ["a", "b"]
    assert kb.lookup("a").follow_up_prompt_ids == ("b",)


def test_load_jsonl_reports_bad_line(tmp_path):
    path = tmp_path / "kb.jsonl"
    path.write_text('{"id": "a", "questions": ["q"], "answer": "x"}\n{oops\n', encoding="utf-8")

    with pytest.raises(ValidationError) as exc_info:
        load_knowledge_base(str(path))

    assert exc_info.value.errors[0].startswith("line 2")


def test_load_csv_groups_rows_by_id(tmp_path):
    path = tmp_path / "kb.csv"
    path.write_text(
        "id,question,answer,follow_ups\n"
        "hours,What are your hours?,9-5,weekend\n"
        "hours,When do you open?,9-5,\n"
        'weekend,Weekend hours?,"Closed, sorry",\n',
        encoding="utf-8",
    )

    kb, _ = load_knowledge_base(str(path))

    assert kb.lookup("hours").questions == ("What are your hours?", "When do you open?")
    assert kb.lookup("hours").follow_up_prompt_ids == ("weekend",)
    assert kb.lookup("weekend").answer == "Closed, sorry"


def test_load_tsv_without_id_groups_by_answer(tmp_path):
    path = tmp_path / "kb.tsv"
    path.write_text(
        "Question\tAnswer\n"
        "Where are you?\t12 High Street\n"
        "What is your address?\t12 High Street\n"
        "Phone number?\t555-0100\n",
        encoding="utf-8",
    )

    kb, _ = load_knowledge_base(str(path))

    assert [e.id for e in kb] == ["1", "2"]
    assert kb.lookup("1").questions == ("Where are you?", "What is your address?")
    assert kb.lookup("2").answer == "555-0100"


def test_csv_conflicting_answers_rejected(tmp_path):
    path = tmp_path / "kb.csv"
    path.write_text("id,question,answer\na,q1,x\na,q2,y\n", encoding="utf-8")

    with pytest.raises(ValidationError, match="conflicting answers"):
        load_knowledge_base(str(path))


def test_csv_missing_columns_rejected(tmp_path):
    path = tmp_path / "kb.csv"
    path.write_text("id,prompt\na,q1\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_knowledge_base(str(path))


def test_unsupported_and_missing_files(tmp_path):
    with pytest.raises(ConfigError, match="Unsupported"):
        load_knowledge_base(str(tmp_path / "kb.yaml"))
    with pytest.raises(ConfigError, match="not found"):
        load_knowledge_base(str(tmp_path / "missing.json"))


def test_invalid_json_is_validation_error(tmp_path):
    path = tmp_path / "kb.json"
    path.write_text("[{", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_knowledge_base(str(path))


def test_config_loader_threshold(tmp_path, hours_entries, kb_file):
    assert ConfigLoader(Settings(min_confidence=0.4), kb_file).load().min_confidence == 0.4

    override = write_json(tmp_path / "override.json", {"min_confidence": 0.75, "entries": hours_entries})
    assert ConfigLoader(Settings(min_confidence=0.4), override).load().min_confidence == 0.75

    bad = write_json(tmp_path / "bad.json", {"min_confidence": 2, "entries": hours_entries})
    with pytest.raises(ValidationError):
        ConfigLoader(Settings(), bad).load()


def test_reload_swaps_on_success_and_keeps_old_on_failure(tmp_path, hours_entries):
    path = tmp_path / "kb.json"
    write_json(path, hours_entries)
    loader = ConfigLoader(Settings(), str(path))
    provider = KnowledgeBaseProvider(loader.load().knowledge_base)
    original = provider.current

    write_json(path, [{"id": "new", "questions": ["q"], "answer": "a"}])
    loaded = loader.reload(provider)
    assert provider.current is loaded.knowledge_base
    assert [e.id for e in provider.current] == ["new"]

    write_json(path, [{"id": "broken", "questions": ["q"], "answer": "a", "follow_ups": ["ghost"]}])
    with pytest.raises(ValidationError):
        loader.reload(provider)
    assert [e.id for e in provider.current] == ["new"]
    assert provider.current is not original


def test_csv_blank_id_rejected_when_id_column_present(tmp_path):
    path = tmp_path / "kb.csv"
    path.write_text(
        "id,question,answer\n"
        "1,Where are you?,12 High Street\n"
        ",What is your phone number?,555-0100\n",
        encoding="utf-8",
    )

    with pytest.raises(ValidationError) as exc_info:
        load_knowledge_base(str(path))

    assert exc_info.value.errors == ["row 3: id must not be blank"]
