"""
Fix prompt construction for auto-fix rounds
"""

from typing import Dict, List, Mapping, Optional

from forgeloop.core.config import settings
from forgeloop.core.logging_config import logger
from forgeloop.modules.protocol.instructions import Problem, ProblemReport
from forgeloop.modules.protocol.problem_reporter import ProblemReporter, problem_reporter
from forgeloop.modules.workspace.backing_store import BackingStore


def _describe(problem: Problem) -> str:
    text = f"{problem.location()} - {problem.message}"
    if problem.code:
        text += f" ({problem.code})"
    return text


def build_fix_prompt(
    report: ProblemReport,
    snippets: Optional[Mapping[int, str]] = None,
    reporter: Optional[ProblemReporter] = None,
) -> str:
    """
    Render the user message for one fix round.

    Args:
        report: problems still present in the workspace
        snippets: source excerpt per problem index, shown under that problem
        reporter: formats the embedded report block
    """
    reporter = reporter or problem_reporter
    snippets = snippets or {}

    lines: List[str] = [
        f"Fix these {len(report.problems)} problem(s):",
        "",
        reporter.format(report),
        "",
    ]
    for number, problem in enumerate(report.problems, start=1):
        lines.append(f"{number}. {_describe(problem)}")
        snippet = snippets.get(number - 1)
        if snippet:
            lines.append("```")
            lines.append(snippet.rstrip("\n"))
            lines.append("```")

    return "\n".join(lines)


async def collect_snippets(
    report: ProblemReport,
    store: BackingStore,
    context_lines: Optional[int] = None,
) -> Dict[int, str]:
    """Read the lines around each problem; unreadable files are left out"""
    if context_lines is None:
        context_lines = settings.FIX_PROMPT_SNIPPET_LINES
    if context_lines <= 0:
        return {}

    cache: Dict[str, Optional[List[str]]] = {}
    snippets: Dict[int, str] = {}

    for index, problem in enumerate(report.problems):
        if problem.file not in cache:
            try:
                content = await store.read(problem.file)
            except Exception as e:
                logger.debug(f"[FixPrompt] Cannot read {problem.file}: {e}")
                content = None
            cache[problem.file] = content.splitlines() if isinstance(content, str) else None

        source = cache[problem.file]
        if not source or problem.line < 1 or problem.line > len(source):
            continue

        start = max(1, problem.line - context_lines)
        end = min(len(source), problem.line + context_lines)
        width = len(str(end))
        snippets[index] = "\n".join(
            f"{n:>{width}} | {source[n - 1]}" for n in range(start, end + 1)
        )

    return snippets
