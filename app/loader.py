"""
Knowledge base loading for the QnA bot

This module handles:
- Reading knowledge base files (JSON, JSONL, CSV and TSV)
- Accepting QnA-style exports (qnaDocuments with context prompts)
- Producing the startup knowledge base and confidence threshold
- Hot-swapping the active knowledge base on reload
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from app.config import Settings
from app.errors import ConfigError, ValidationError
from app.knowledge import KnowledgeBase, KnowledgeBaseProvider

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".json", ".jsonl", ".csv", ".tsv")
FOLLOW_UP_COLUMNS = ("follow_ups", "follow_up_prompt_ids", "followuppromptids", "prompts")


@dataclass(frozen=True)
class LoadedConfig:
    """Knowledge base snapshot and threshold produced by one load."""
    knowledge_base: KnowledgeBase
    min_confidence: float
    source: str


def load_knowledge_base(path: str) -> Tuple[KnowledgeBase, Dict[str, Any]]:
    """
    Load and validate a knowledge base file.

    Args:
        path: Path to a .json, .jsonl, .csv or .tsv file

    Returns:
        Tuple of (knowledge base, file-level options such as min_confidence)

    Raises:
        ConfigError: If the file is missing, unreadable or of an unsupported type
        ValidationError: If the content is malformed
    """
    kb_path = Path(path)
    suffix = kb_path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ConfigError(f"Unsupported knowledge base format: {kb_path.suffix or kb_path.name}")
    if not kb_path.exists():
        raise ConfigError(f"Knowledge base file not found: {kb_path}")

    try:
        text = kb_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read knowledge base {kb_path}: {e}") from e

    options: Dict[str, Any] = {}
    if suffix == ".json":
        records, options = _parse_json(text)
    elif suffix == ".jsonl":
        records = _parse_jsonl(text)
    else:
        records = _parse_delimited(text, delimiter="," if suffix == ".csv" else "\t")

    for record in records:
        record.setdefault("source", kb_path.name)

    logger.info(f"Read {len(records)} records from {kb_path}")
    return KnowledgeBase.load(records), options


def _parse_json(text: str) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError("Knowledge base is not valid JSON", [str(e)]) from e

    options: Dict[str, Any] = {}
    if isinstance(data, dict):
        if "min_confidence" in data:
            options["min_confidence"] = data["min_confidence"]
        items = data.get("entries", data.get("qnaDocuments"))
    else:
        items = data

    if not isinstance(items, list):
        raise ValidationError("Knowledge base JSON must be a list of entries or contain an 'entries' list")
    return [_normalize_record(item, idx) for idx, item in enumerate(items)], options


def _parse_jsonl(text: str) -> List[Dict[str, Any]]:
    records = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValidationError("Knowledge base is not valid JSONL", [f"line {line_no}: {e}"]) from e
        records.append(_normalize_record(item, line_no))
    return records


def _normalize_record(item: Any, position: int) -> Dict[str, Any]:
    if not isinstance(item, dict):
        raise ValidationError("Invalid knowledge base record", [f"record #{position} is not an object"])
    record = dict(item)

    # QnA exports nest follow-ups under context.prompts
    context = record.pop("context", None)
    if isinstance(context, dict) and "prompts" in context and not _has_follow_ups(record):
        record["prompts"] = context["prompts"]

    metadata = record.get("metadata")
    if isinstance(metadata, list):
        # [{"name": ..., "value": ...}] -> {name: value}
        record["metadata"] = {
            str(m.get("name")): str(m.get("value")) for m in metadata if isinstance(m, dict) and "name" in m
        }
    return record


def _has_follow_ups(record: Dict[str, Any]) -> bool:
    return any(key in record for key in ("follow_up_prompt_ids", "followUpPromptIds", "follow_ups", "prompts"))


def _parse_delimited(text: str, delimiter: str) -> List[Dict[str, Any]]:
    reader = csv.DictReader(io.StringIO(text, newline=""), delimiter=delimiter)
    if not reader.fieldnames:
        return []
    columns = {name.strip().lower(): name for name in reader.fieldnames if name}
    if "question" not in columns or "answer" not in columns:
        raise ValidationError("Delimited knowledge base must have 'question' and 'answer' columns")
    follow_up_column = next((columns[c] for c in FOLLOW_UP_COLUMNS if c in columns), None)

    errors: List[str] = []
    grouped: Dict[str, Dict[str, Any]] = {}
    answer_ids: Dict[str, str] = {}

    for row_no, row in enumerate(reader, start=2):
        question = (row.get(columns["question"]) or "").strip()
        answer = (row.get(columns["answer"]) or "").strip()

        if "id" in columns:
            entry_id = (row.get(columns["id"]) or "").strip()
            if not entry_id:
                errors.append(f"row {row_no}: id must not be blank")
                continue
        else:
            # Without an id column, rows sharing an answer are phrasings of one entry
            entry_id = answer_ids.setdefault(answer, str(len(answer_ids) + 1))

        record = grouped.get(entry_id)
        if record is None:
            record = grouped[entry_id] = {"id": entry_id, "questions": [], "answer": answer, "follow_ups": []}
            if "source" in columns and row.get(columns["source"]):
                record["source"] = row[columns["source"]].strip()
        elif answer and record["answer"] and answer != record["answer"]:
            errors.append(f"row {row_no}: entry {entry_id!r} has conflicting answers")
        elif answer and not record["answer"]:
            record["answer"] = answer

        if question:
            record["questions"].append(question)
        if follow_up_column:
            for target in (row.get(follow_up_column) or "").split(";"):
                target = target.strip()
                if target and target not in record["follow_ups"]:
                    record["follow_ups"].append(target)

    if errors:
        raise ValidationError("Invalid knowledge base rows", errors)
    return list(grouped.values())


class ConfigLoader:
    """Produces the knowledge base and threshold, and reloads them on demand."""

    def __init__(self, settings: Settings, path: Optional[str] = None):
        self.settings = settings
        self.path = path or settings.knowledge_base_path

    def load(self) -> LoadedConfig:
        """
        Load the knowledge base named by the settings.

        A ``min_confidence`` key at the top of a JSON knowledge base overrides
        the configured threshold.

        Returns:
            LoadedConfig: Validated snapshot plus threshold
        """
        knowledge_base, options = load_knowledge_base(self.path)

        min_confidence = self.settings.min_confidence
        if "min_confidence" in options:
            try:
                min_confidence = float(options["min_confidence"])
            except (TypeError, ValueError) as e:
                raise ValidationError("Invalid min_confidence", [str(e)]) from e
            if not 0.0 <= min_confidence <= 1.0:
                raise ValidationError("Invalid min_confidence", [f"{min_confidence} is outside [0, 1]"])

        return LoadedConfig(knowledge_base=knowledge_base, min_confidence=min_confidence, source=self.path)

    def reload(self, provider: KnowledgeBaseProvider) -> LoadedConfig:
        """
        Re-read the knowledge base and swap it into ``provider``.

        The active knowledge base is left untouched if loading fails.

        Args:
            provider: Provider holding the active knowledge base

        Returns:
            LoadedConfig: The newly active snapshot plus threshold
        """
        try:
            loaded = self.load()
        except (ConfigError, ValidationError) as e:
            logger.error(f"Knowledge base reload failed, keeping version {provider.current.version[:12]}: {e}")
            raise
        provider.swap(loaded.knowledge_base)
        return loaded
