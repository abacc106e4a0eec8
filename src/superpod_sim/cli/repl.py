"""Interactive prompt loop over a terminal session."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.completion import CompleteEvent, Completer, Completion
from prompt_toolkit.document import Document
from prompt_toolkit.history import FileHistory, InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout

from superpod_sim.cli.render import Renderer
from superpod_sim.core.completion import get_completions, parse_completion_context
from superpod_sim.core.session import TerminalSession

EXIT_WORDS = frozenset({"exit", "logout"})


class SessionCompleter(Completer):
    """prompt_toolkit adapter over the completion engine.

    Completion is offered only at the shell prompt, not inside cmsh or nvsm.
    """

    def __init__(self, session: TerminalSession) -> None:
        self.session = session

    def get_completions(self, document: Document, complete_event: CompleteEvent) -> Iterable[Completion]:
        _ = complete_event
        if self.session.active_tool is not None:
            return
        text = document.text_before_cursor
        cluster = self.session.store.cluster
        result = get_completions(
            text,
            cwd=self.session.context.current_path,
            nodes=[node.hostname for node in cluster.nodes],
            extra_commands=self.session.registry.names(),
        )
        word = parse_completion_context(text).current_word
        for candidate in result.completions:
            yield Completion(candidate, start_position=-len(word), display_meta=result.type)


def _history(path: Path | None) -> FileHistory | InMemoryHistory:
    if path is None:
        return InMemoryHistory()
    path.parent.mkdir(parents=True, exist_ok=True)
    return FileHistory(str(path))


def run_repl(session: TerminalSession, renderer: Renderer, *, history_file: Path | None = None) -> int:
    """Read lines until exit or EOF; returns the last exit code."""
    prompt_session: PromptSession[str] = PromptSession(
        history=_history(history_file),
        completer=SessionCompleter(session),
        complete_while_typing=False,
    )
    exit_code = 0
    while True:
        try:
            with patch_stdout(raw=True):
                line = prompt_session.prompt(session.prompt)
        except KeyboardInterrupt:
            continue
        except EOFError:
            break

        if session.active_tool is None and line.strip() in EXIT_WORDS:
            break
        result = session.submit(line)
        renderer.output(result.output, result.exit_code)
        exit_code = result.exit_code

    logger.info("repl.exit tools_used={}", sorted(session.tools_used))
    renderer.goodbye()
    return exit_code
