"""
Problem Reporter
Renders checker diagnostics in the tag protocol and parses them back

    <forge-problem-report summary="2 problems">
    <problem file="src/App.tsx" line="12" column="5" code="2304">Cannot find name 'foo'.</problem>
    <problem file="src/main.tsx" line="1" column="1" code="6133">'React' is declared but its value is never read.</problem>
    </forge-problem-report>

parse(format(report)) == report for every report.
"""

import html
import re
from typing import Iterable, List, Optional

from forgeloop.core.config import settings, parse_tag_prefix
from forgeloop.core.exceptions import ProblemReportParseError
from forgeloop.modules.protocol.instructions import Diagnostic, Problem, ProblemReport
from forgeloop.modules.protocol.tag_extractor import parse_attributes


_PROBLEM_RE = re.compile(r"<problem(\s[^<>]*?)?>(.*?)</problem>", re.DOTALL)


def _escape_attr(value: str) -> str:
    return html.escape(value, quote=True)


def _escape_content(value: str) -> str:
    return html.escape(value, quote=False)


def summarize(count: int) -> str:
    return f"{count} problem" + ("" if count == 1 else "s")


class ProblemReporter:
    """Formats and parses <prefix-problem-report> blocks"""

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = parse_tag_prefix(prefix or settings.TAG_PREFIX)
        self.tag = f"{self.prefix}-problem-report"
        self._report_re = re.compile(
            rf"<{re.escape(self.tag)}(\s[^<>]*?)?>(.*?)</{re.escape(self.tag)}>",
            re.DOTALL,
        )

    def build(self, diagnostics: Iterable[Diagnostic], summary: Optional[str] = None) -> ProblemReport:
        """Wrap checker diagnostics (order preserved) in a ProblemReport"""
        problems = tuple(diagnostics)
        return ProblemReport(
            summary=summary if summary is not None else summarize(len(problems)),
            problems=problems,
        )

    def format(self, report: ProblemReport) -> str:
        lines = [f'<{self.tag} summary="{_escape_attr(report.summary)}">']
        for problem in report.problems:
            lines.append(
                f'<problem file="{_escape_attr(problem.file)}" '
                f'line="{problem.line}" column="{problem.column}" '
                f'code="{_escape_attr(problem.code)}">'
                f'{_escape_content(problem.message)}</problem>'
            )
        lines.append(f"</{self.tag}>")
        return "\n".join(lines)

    def parse(self, text: str) -> ProblemReport:
        """
        Parse the first problem report in text.

        Raises:
            ProblemReportParseError: no report block, or a malformed problem
        """
        match = self._report_re.search(text or "")
        if not match:
            raise ProblemReportParseError(f"No <{self.tag}> block found")

        try:
            attrs = parse_attributes(match.group(1) or "")
        except ValueError as e:
            raise ProblemReportParseError(f"Malformed report attributes: {e}") from e

        problems: List[Problem] = []
        for problem_match in _PROBLEM_RE.finditer(match.group(2)):
            try:
                p_attrs = parse_attributes(problem_match.group(1) or "")
                problems.append(Problem(
                    file=p_attrs["file"],
                    line=int(p_attrs["line"]),
                    column=int(p_attrs["column"]),
                    code=p_attrs.get("code", ""),
                    message=html.unescape(problem_match.group(2)),
                ))
            except (KeyError, ValueError) as e:
                raise ProblemReportParseError(f"Malformed problem entry: {e}") from e

        return ProblemReport(summary=attrs.get("summary", ""), problems=tuple(problems))


# Singleton instance
problem_reporter = ProblemReporter()
