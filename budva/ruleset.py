"""Loading and watching the YAML file of forwarding rules.

Chat identifiers are written positive in the file; loading negates them,
as groups and channels carry negative identifiers.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import yaml
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

_INVALID_RULE_ID = re.compile(r"[,:]")
_OPTION_KEYS = ("translate", "sign", "link", "prev", "next")


class RulesetError(Exception):
    """The ruleset file cannot be read, parsed or validated."""


class EmptyConfigError(RulesetError):
    """The ruleset holds no rules, sources or destinations."""

    def __init__(self, ruleset: "RuleSet") -> None:
        super().__init__("empty ruleset config")
        self.ruleset = ruleset


@dataclass
class SourceOption:
    """An optional feature of a source, applied to the listed destinations."""

    title: str = ""
    lang: str = ""
    for_chats: List[int] = field(default_factory=list)


@dataclass
class ReplaceFragment:
    """A text fragment replaced by another of the same UTF-16 length."""

    from_text: str = ""
    to_text: str = ""


@dataclass
class Source:
    chat_id: int = 0
    translate: Optional[SourceOption] = None
    sign: Optional[SourceOption] = None
    link: Optional[SourceOption] = None
    prev: Optional[SourceOption] = None
    next: Optional[SourceOption] = None

    def options(self) -> List[SourceOption]:
        found = (self.translate, self.sign, self.link, self.prev, self.next)
        return [opt for opt in found if opt is not None]


@dataclass
class Destination:
    chat_id: int = 0
    replace_myself_links: Dict[str, Any] = field(default_factory=dict)
    replace_fragments: List[ReplaceFragment] = field(default_factory=list)


@dataclass
class ForwardRule:
    id: str = ""
    from_chat: int = 0
    to: List[int] = field(default_factory=list)
    send_copy: bool = False
    copy_once: bool = False
    indelible: bool = False
    exclude: str = ""
    check: int = 0
    other: int = 0


@dataclass
class RuleSet:
    sources: Dict[int, Source] = field(default_factory=dict)
    destinations: Dict[int, Destination] = field(default_factory=dict)
    forward_rules: Dict[str, ForwardRule] = field(default_factory=dict)
    unique_sources: Set[int] = field(default_factory=set)
    unique_destinations: Set[int] = field(default_factory=set)
    ordered_forward_rules: List[str] = field(default_factory=list)


def utf16_len(text: str) -> int:
    """Length of the text in UTF-16 code units."""
    return sum(2 if ord(ch) >= 0x10000 else 1 for ch in text)


class RulesetLoader:
    """Reads the ruleset file and watches it for changes."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)
        self._observer: Optional[Any] = None

    def load(self) -> RuleSet:
        """Read, validate and normalise the ruleset file."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RulesetError(f"read ruleset file: {exc}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise RulesetError(f"parse ruleset yaml: {exc}") from exc

        ruleset = _parse(data)
        _validate(ruleset)
        _transform(ruleset)
        _enrich(ruleset)
        if not (
            ruleset.unique_sources
            and ruleset.unique_destinations
            and ruleset.ordered_forward_rules
        ):
            raise EmptyConfigError(ruleset)
        return ruleset

    def watch(self, on_change: Callable[[], None]) -> None:
        """Call ``on_change`` whenever the file is written or created."""
        if not self.path.is_file():
            raise RulesetError(f"watch file {str(self.path)!r}: no such file")
        target = os.path.realpath(self.path)
        handler = _FileChangeHandler(target, str(self.path), on_change)
        observer = Observer()
        try:
            observer.schedule(handler, os.path.dirname(target), recursive=False)
            observer.start()
        except OSError as exc:
            raise RulesetError(f"watch file {str(self.path)!r}: {exc}") from exc
        self.close()
        self._observer = observer

    def close(self) -> None:
        """Stop watching; does nothing if no watch is running."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()


class _FileChangeHandler(FileSystemEventHandler):
    def __init__(self, target: str, shown: str, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._target = target
        self._shown = shown
        self._on_change = on_change

    def _matches(self, event: FileSystemEvent) -> bool:
        path = event.src_path
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        return not event.is_directory and os.path.realpath(path) == self._target

    def _fire(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            logger.info("Ruleset file changed: %s", self._shown)
            self._on_change()

    def on_modified(self, event: FileSystemEvent) -> None:
        self._fire(event)

    def on_created(self, event: FileSystemEvent) -> None:
        self._fire(event)


def _mapping(value: Any, what: str) -> Dict[Any, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RulesetError(f"parse ruleset yaml: {what} must be a mapping")
    return value


def _chat_id(value: Any, what: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise RulesetError(f"parse ruleset yaml: {what} must be an integer, got {value!r}")
    return value


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _parse_option(data: Any, what: str) -> Optional[SourceOption]:
    if data is None:
        return None
    data = _mapping(data, what)
    return SourceOption(
        title=_text(data.get("title")),
        lang=_text(data.get("lang")),
        for_chats=[_chat_id(x, f"{what}.for") for x in data.get("for") or []],
    )


def _parse_source(key: Any, data: Any) -> Source:
    data = _mapping(data, f"source {key}")
    options = {
        name: _parse_option(data.get(name), f"source {key}.{name}")
        for name in _OPTION_KEYS
    }
    return Source(**options)


def _parse_destination(key: Any, data: Any) -> Destination:
    data = _mapping(data, f"destination {key}")
    fragments = [
        ReplaceFragment(
            from_text=_text(frag.get("from")), to_text=_text(frag.get("to"))
        )
        for frag in (
            _mapping(item, f"destination {key} fragment")
            for item in data.get("replaceFragments") or []
        )
    ]
    return Destination(
        replace_myself_links=dict(_mapping(data.get("replaceMyselfLinks"), "replaceMyselfLinks")),
        replace_fragments=fragments,
    )


def _parse_rule(key: str, data: Any) -> ForwardRule:
    data = _mapping(data, f"forward rule {key}")
    return ForwardRule(
        from_chat=_chat_id(data.get("from"), f"forward rule {key}.from"),
        to=[_chat_id(x, f"forward rule {key}.to") for x in data.get("to") or []],
        send_copy=bool(data.get("sendCopy", False)),
        copy_once=bool(data.get("copyOnce", False)),
        indelible=bool(data.get("indelible", False)),
        exclude=_text(data.get("exclude")),
        check=_chat_id(data.get("check"), f"forward rule {key}.check"),
        other=_chat_id(data.get("other"), f"forward rule {key}.other"),
    )


def _parse(data: Any) -> RuleSet:
    root = _mapping(data, "ruleset")
    return RuleSet(
        sources={
            _chat_id(k, "source id"): _parse_source(k, v)
            for k, v in _mapping(root.get("sources"), "sources").items()
        },
        destinations={
            _chat_id(k, "destination id"): _parse_destination(k, v)
            for k, v in _mapping(root.get("destinations"), "destinations").items()
        },
        forward_rules={
            str(k): _parse_rule(str(k), v)
            for k, v in _mapping(root.get("forwardRules"), "forwardRules").items()
        },
    )


def _validate(ruleset: RuleSet) -> None:
    for rule_id, rule in ruleset.forward_rules.items():
        if _INVALID_RULE_ID.search(rule_id):
            raise RulesetError(
                f"forward rule {rule_id!r} contains invalid characters ',' or ':'"
            )
        if rule.from_chat < 0:
            raise RulesetError(
                f"forward rule {rule_id!r}: From must be positive, got {rule.from_chat}"
            )
        for i, dst in enumerate(rule.to):
            if dst < 0:
                raise RulesetError(
                    f"forward rule {rule_id!r}: To[{i}] must be positive, got {dst}"
                )
            if dst == rule.from_chat:
                raise RulesetError(
                    f"forward rule {rule_id!r}: To[{i}] must differ from From"
                )

    for dst_id, dst in ruleset.destinations.items():
        for i, frag in enumerate(dst.replace_fragments):
            from_len, to_len = utf16_len(frag.from_text), utf16_len(frag.to_text)
            if from_len != to_len:
                raise RulesetError(
                    f"destination {dst_id}: ReplaceFragments[{i}] From/To UTF-16 "
                    f"lengths differ ({from_len} vs {to_len})"
                )


def _transform(ruleset: RuleSet) -> None:
    ruleset.sources = {-k: v for k, v in ruleset.sources.items()}
    for source in ruleset.sources.values():
        for option in source.options():
            option.for_chats = [-x for x in option.for_chats]
    ruleset.destinations = {-k: v for k, v in ruleset.destinations.items()}
    for rule in ruleset.forward_rules.values():
        rule.from_chat = -rule.from_chat
        rule.to = [-x for x in rule.to]
        rule.check = -rule.check
        rule.other = -rule.other


def _enrich(ruleset: RuleSet) -> None:
    for dst_id, dst in ruleset.destinations.items():
        dst.chat_id = dst_id
    for src_id, src in ruleset.sources.items():
        src.chat_id = src_id

    ordered = []
    for rule_id, rule in ruleset.forward_rules.items():
        rule.id = rule_id
        if rule.from_chat not in ruleset.sources:
            ruleset.sources[rule.from_chat] = Source(chat_id=rule.from_chat)
        ruleset.unique_sources.add(rule.from_chat)
        ruleset.unique_destinations.update(rule.to)
        ordered.append(rule_id)
    ruleset.ordered_forward_rules = ordered