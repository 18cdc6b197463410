#!/usr/bin/env python3
"""Dictionarium: a keystroke-driven terminal lookup over Occidental word lists."""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from operator import itemgetter
from pathlib import Path
from typing import Optional, Sequence

from prompt_toolkit import Application
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.key_binding.key_processor import KeyPress
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout.containers import ConditionalContainer, HSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension as D
from prompt_toolkit.layout.layout import Layout
from prompt_toolkit.styles import Style as PtStyle
from prompt_toolkit.widgets import Frame

log = logging.getLogger(__name__)

_DICTIONARY_DIR = Path(__file__).resolve().parent / "dictionaries"

MAX_RESULTS = 20
MIN_TOKEN_LENGTH = 2


# ════════════════════════════════════════════════════════════════════════
#  Data Models
# ════════════════════════════════════════════════════════════════════════


class Language(Enum):
    """A searchable dictionary. Values are (tab label, payload file)."""

    ENGLISH = ("Anglés", "dictionarium.txt")
    GERMAN = ("German", "dictionarium-de.txt")
    CZECH = ("Tchek", "tchek.txt")
    ESPERANTO = ("Esperanto", "esperanto.txt")
    COSMOGLOTTA1 = ("Cosmoglotta 1", "cosmoglotta.txt")
    COSMOGLOTTA2 = ("Cosmoglotta 2", "cosmoglotta2.txt")

    def __init__(self, label: str, filename: str):
        self.label = label
        self.filename = filename


@dataclass(frozen=True)
class MatchEntry:
    """A matching line split around the first occurrence of the token."""
    prefix: str
    match: str
    suffix: str


@dataclass(frozen=True)
class ParsedQuery:
    """Search token plus the rewritten buffer, if the buffer must change."""
    token: str
    normalized: Optional[str] = None


class DictionaryError(Exception):
    """A dictionary payload is missing or unreadable."""


# ════════════════════════════════════════════════════════════════════════
#  Language Selector
# ════════════════════════════════════════════════════════════════════════

LANGUAGE_ORDER = [
    Language.ENGLISH,
    Language.GERMAN,
    Language.CZECH,
    Language.ESPERANTO,
    Language.COSMOGLOTTA1,
    Language.COSMOGLOTTA2,
]

LANGUAGE_LABELS = [language.label for language in LANGUAGE_ORDER]


def language_index(language: Language) -> int:
    return LANGUAGE_ORDER.index(language)


def next_language(current: Language) -> Language:
    return LANGUAGE_ORDER[(language_index(current) + 1) % len(LANGUAGE_ORDER)]


# ════════════════════════════════════════════════════════════════════════
#  Dictionary Store
# ════════════════════════════════════════════════════════════════════════


class DictionaryStore:
    """Read-only word lists, one per language, fixed after loading."""

    def __init__(self, dictionaries: dict[Language, Sequence[str]]):
        missing = [lang.label for lang in LANGUAGE_ORDER if lang not in dictionaries]
        if missing:
            raise DictionaryError(f"no dictionary for: {', '.join(missing)}")
        self._lines = {lang: tuple(dictionaries[lang]) for lang in LANGUAGE_ORDER}

    def __getitem__(self, language: Language) -> tuple[str, ...]:
        return self._lines[language]


def load_dictionaries(directory: Path) -> DictionaryStore:
    """Read every language's payload from directory (UTF-8, one entry per line)."""
    dictionaries: dict[Language, list[str]] = {}
    for language in LANGUAGE_ORDER:
        path = directory / language.filename
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise DictionaryError(
                f"cannot load {language.label} dictionary from {path}: {exc}") from exc
        dictionaries[language] = text.splitlines()
        log.info("Loaded %d %s entries from %s",
                 len(dictionaries[language]), language.label, path)
    return DictionaryStore(dictionaries)


# ════════════════════════════════════════════════════════════════════════
#  Query Parser
# ════════════════════════════════════════════════════════════════════════


def bracket_span(buffer: str) -> Optional[tuple[int, int]]:
    """Positions of the last '[' and last ']', or None unless ']' follows '['."""
    start = buffer.rfind("[")
    finish = buffer.rfind("]")
    if start == -1 or finish < start:
        return None
    return start, finish


def strip_brackets(buffer: str) -> str:
    return buffer.replace("[", "").replace("]", "")


def derive_token(buffer: str) -> str:
    """Search token for the buffer.

    A bracketed group is taken literally (spaces and case kept); otherwise
    the word after the last space is used, lowercased.
    """
    span = bracket_span(buffer)
    if span:
        start, finish = span
        return strip_brackets(buffer[start + 1:finish])
    return buffer.rsplit(" ", 1)[-1].lower()


def parse_query(buffer: str) -> ParsedQuery:
    token = derive_token(buffer)
    if bracket_span(buffer) is None:
        return ParsedQuery(token)
    return ParsedQuery(token, strip_brackets(buffer))


# ════════════════════════════════════════════════════════════════════════
#  Scan Engine
# ════════════════════════════════════════════════════════════════════════


def _partition(lines: Sequence[str], parts: int) -> list[tuple[int, Sequence[str]]]:
    """Split lines into at most `parts` contiguous (offset, slice) pairs."""
    if not lines:
        return []
    size = -(-len(lines) // parts)
    return [(i, lines[i:i + size]) for i in range(0, len(lines), size)]


def _scan_slice(offset: int, lines: Sequence[str], needle: str) -> list[tuple[int, str]]:
    hits = []
    for i, line in enumerate(lines):
        lowered = line.lower()
        if needle in lowered:
            hits.append((offset + i, lowered))
    return hits


class ScanEngine:
    """Case-insensitive substring scan, fanned out over a fixed thread pool.

    Each worker tags its hits with the original line index, and the gather
    sorts on that index, so the result order never depends on scheduling.
    """

    def __init__(self, workers: Optional[int] = None):
        if workers is None:
            workers = os.cpu_count() or 1
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.workers = workers
        self._pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="dictionarium-scan")

    def scan(self, dictionary: Sequence[str], token: str) -> list[str]:
        """Return up to MAX_RESULTS lowercased lines containing token."""
        if len(token) < MIN_TOKEN_LENGTH:
            return []
        needle = token.lower()
        started = time.perf_counter()
        hits: list[tuple[int, str]] = []
        for found in self._pool.map(
                lambda part: _scan_slice(part[0], part[1], needle),
                _partition(dictionary, self.workers)):
            hits.extend(found)
        hits.sort(key=itemgetter(0))
        log.debug("scan %r: %d hits in %d lines (%.1f ms)", needle, len(hits),
                  len(dictionary), (time.perf_counter() - started) * 1000)
        return [line for _, line in hits[:MAX_RESULTS]]

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


# ════════════════════════════════════════════════════════════════════════
#  Result Formatter
# ════════════════════════════════════════════════════════════════════════


def format_matches(lines: Sequence[str], token: str) -> list[MatchEntry]:
    entries = []
    for line in lines:
        prefix, _, suffix = line.partition(token)
        entries.append(MatchEntry(prefix, token, suffix))
    return entries


# ════════════════════════════════════════════════════════════════════════
#  Session State Machine
# ════════════════════════════════════════════════════════════════════════


class ViewMode(Enum):
    INTRO = "intro"
    BROWSING = "browsing"
    PREVIEW_OVERLAY = "preview"


class EventKind(Enum):
    CHARACTER = "character"
    BACKSPACE = "backspace"
    ESCAPE = "escape"
    ADVANCE_LANGUAGE = "advance-language"
    PREVIEW = "preview"
    REDRAW = "redraw"
    QUIT = "quit"
    IGNORED = "ignored"


class Command(Enum):
    """What the display surface must do after an event."""
    RENDER = "render"
    CLEAR = "clear"
    QUIT = "quit"


@dataclass(frozen=True)
class InputEvent:
    kind: EventKind
    char: str = ""


class Session:
    """Input buffer, selected language and view mode for one run.

    Only the UI thread calls handle(); every buffer or language change runs
    a fresh scan, nothing is cached between keystrokes.
    """

    def __init__(self, store: DictionaryStore, scanner: ScanEngine):
        self.store = store
        self.scanner = scanner
        self.language = Language.ENGLISH
        self.buffer = ""
        self.view_mode = ViewMode.INTRO
        self.results: list[MatchEntry] = []

    def handle(self, event: InputEvent) -> Command:
        log.debug("%s event %s in %s", self.language.label, event.kind.value,
                  self.view_mode.value)
        if self.view_mode is ViewMode.PREVIEW_OVERLAY:
            # Whatever closes the overlay is swallowed, quit included.
            self.view_mode = ViewMode.BROWSING
            return Command.RENDER
        if event.kind is EventKind.QUIT:
            return Command.QUIT
        if event.kind is EventKind.PREVIEW:
            self.view_mode = ViewMode.PREVIEW_OVERLAY
            return Command.RENDER
        if self.view_mode is ViewMode.INTRO:
            self._apply(event)
            self.buffer = ""
            self.view_mode = ViewMode.BROWSING
            self.refresh()
        elif self._apply(event):
            self.refresh()
        if event.kind is EventKind.REDRAW:
            return Command.CLEAR
        return Command.RENDER

    def _apply(self, event: InputEvent) -> bool:
        kind = event.kind
        if kind is EventKind.CHARACTER:
            self.buffer += event.char
        elif kind is EventKind.BACKSPACE:
            self.buffer = self.buffer[:-1]
        elif kind is EventKind.ESCAPE:
            self.buffer = ""
        elif kind is EventKind.ADVANCE_LANGUAGE:
            self.language = next_language(self.language)
        else:
            return False
        return True

    def refresh(self) -> None:
        """Re-derive the token, consume bracket syntax, rescan and reformat."""
        query = parse_query(self.buffer)
        if query.normalized is not None:
            self.buffer = query.normalized
        lines = self.scanner.scan(self.store[self.language], query.token)
        self.results = format_matches(lines, query.token.lower())


# ════════════════════════════════════════════════════════════════════════
#  Display helpers
# ════════════════════════════════════════════════════════════════════════

INTRO_TEXT = """Benevenit al dictionarium in Occidental.

Ples presser sur quelcunc clave por comensar.

Actualmen tu posse serchar in dictionariums in:
·anglés
·german
·tchek
·esperanto
·li archives de Cosmoglotta inter 1922 e 1950.

On usa Tab por changear inter lingues.

Por serchar con plu quam un parol, on usa [].
Por exemple: [un bon idé].
Sin capter it inter in [], 'un bon idé' vell serchar por solmen li parol 'idé'."""


_KEY_EVENTS = {
    Keys.ControlX: EventKind.QUIT,
    Keys.ControlS: EventKind.REDRAW,
    Keys.ControlN: EventKind.PREVIEW,
    Keys.Backspace: EventKind.BACKSPACE,
    Keys.Escape: EventKind.ESCAPE,
    Keys.Tab: EventKind.ADVANCE_LANGUAGE,
}


def key_event(key_press: KeyPress) -> InputEvent:
    """Map one prompt_toolkit key press to a session event."""
    if key_press.key in _KEY_EVENTS:
        return InputEvent(_KEY_EVENTS[key_press.key])
    data = key_press.data
    if len(data) == 1 and data.isprintable():
        return InputEvent(EventKind.CHARACTER, data)
    return InputEvent(EventKind.IGNORED)


def meta_key_events(key_press: KeyPress) -> list[InputEvent]:
    """Events for Escape followed by key_press.

    Alt+char arrives the same way and types the char alone; any other
    key after Escape clears the buffer and then acts as usual.
    """
    event = key_event(key_press)
    if event.kind is EventKind.CHARACTER:
        return [event]
    return [InputEvent(EventKind.ESCAPE), event]


def language_tab_fragments(selected: int) -> list[tuple[str, str]]:
    fragments = []
    for i, label in enumerate(LANGUAGE_LABELS):
        if i:
            fragments.append(("class:tab.divider", " │ "))
        style = "class:tab.selected" if i == selected else "class:tab"
        fragments.append((style, label))
    return fragments


def result_fragments(results: Sequence[MatchEntry]) -> list[tuple[str, str]]:
    fragments = []
    for entry in results:
        fragments.append(("", entry.prefix))
        fragments.append(("class:match", entry.match))
        fragments.append(("", entry.suffix + "\n"))
    return fragments


# ════════════════════════════════════════════════════════════════════════
#  Application
# ════════════════════════════════════════════════════════════════════════


def create_app(session: Session, input=None, output=None) -> Application:
    """Build the prompt_toolkit Application around a session."""

    # ── Screens ──────────────────────────────────────────────────────

    intro_screen = Frame(
        Window(content=FormattedTextControl(INTRO_TEXT), wrap_lines=True,
               style="class:intro"),
        title="Benevenit!",
    )

    language_tabs = Frame(
        Window(
            content=FormattedTextControl(
                lambda: language_tab_fragments(language_index(session.language))),
            height=1,
        ),
        title="Lingues",
    )
    typing_box = Frame(
        Window(content=FormattedTextControl(lambda: session.buffer),
               wrap_lines=True),
        title="Tippar ci",
        height=D(weight=30),
    )
    results_box = Frame(
        Window(content=FormattedTextControl(lambda: result_fragments(session.results)),
               wrap_lines=True),
        title="Resultates",
        height=D(weight=70),
    )
    browsing_screen = HSplit([language_tabs, typing_box, results_box])

    preview_screen = HSplit([
        Window(height=D(weight=20)),
        Window(content=FormattedTextControl(lambda: session.buffer),
               wrap_lines=True, height=D(weight=60), style="class:preview"),
        Window(height=D(weight=20)),
    ])

    def showing(mode):
        return Condition(lambda: session.view_mode is mode)

    root = HSplit([
        ConditionalContainer(intro_screen, filter=showing(ViewMode.INTRO)),
        ConditionalContainer(browsing_screen, filter=showing(ViewMode.BROWSING)),
        ConditionalContainer(preview_screen, filter=showing(ViewMode.PREVIEW_OVERLAY)),
    ])

    # ── Key bindings ─────────────────────────────────────────────────

    kb = KeyBindings()

    def dispatch(event, input_events):
        for input_event in input_events:
            command = session.handle(input_event)
            if command is Command.QUIT:
                event.app.exit(result=0)
                return
            if command is Command.CLEAR:
                event.app.renderer.clear()

    for key in list(_KEY_EVENTS) + [Keys.Any]:
        @kb.add(key)
        def _(event):
            dispatch(event, [key_event(event.key_sequence[-1])])

    @kb.add("escape", Keys.Any)
    def _(event):
        dispatch(event, meta_key_events(event.key_sequence[-1]))

    # ── Style ────────────────────────────────────────────────────────

    style = PtStyle.from_dict({
        "": "#e0e0e0 bg:#2a2a2a",
        "frame.border": "#777777",
        "frame.label": "#e0e0e0 bold",
        "intro": "#e0e0e0",
        "tab": "#8a8a8a",
        "tab.divider": "#777777",
        "tab.selected": "#e0af68 bold",
        "match": "#e0af68 italic",
        "preview": "#e0e0e0",
    })

    # ── Build Application ────────────────────────────────────────────

    app = Application(
        layout=Layout(root),
        key_bindings=kb,
        style=style,
        full_screen=True,
        mouse_support=False,
        input=input,
        output=output,
    )
    app.ttimeoutlen = 0.05
    app.timeoutlen = 0.05

    return app


# ════════════════════════════════════════════════════════════════════════
#  Entry point
# ════════════════════════════════════════════════════════════════════════


def main() -> None:
    if os.environ.get("DICTIONARIUM_LOG"):
        logging.basicConfig(
            filename=os.environ["DICTIONARIUM_LOG"], level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if os.environ.get("DICTIONARIUM_DIR"):
        data_dir = Path(os.environ["DICTIONARIUM_DIR"])
    else:
        data_dir = _DICTIONARY_DIR

    workers = None
    if os.environ.get("DICTIONARIUM_WORKERS"):
        raw = os.environ["DICTIONARIUM_WORKERS"]
        try:
            workers = int(raw)
        except ValueError:
            workers = 0
        if workers < 1:
            raise SystemExit(
                f"dictionarium: DICTIONARIUM_WORKERS must be a positive integer, got {raw!r}")

    try:
        store = load_dictionaries(data_dir)
    except DictionaryError as exc:
        raise SystemExit(f"dictionarium: {exc}") from exc

    with ScanEngine(workers) as scanner:
        app = create_app(Session(store, scanner))
        app.run()


if __name__ == "__main__":
    main()
