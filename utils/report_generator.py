# utils/report_generator.py

import html
import json
from pathlib import Path
from typing import List

from config import PERCEPTUAL_HASH_COUNT
from core.duplicate_matcher import MatchReport, MatchRecord, MatchType

MAX_EXAMPLES = 3

_SECTION_TITLES = {
    MatchType.CONTEXT: "Context Matches",
    MatchType.EXACT: "Exact Matches",
    MatchType.VISUAL: "Visual Matches",
}


def describe_match(record: MatchRecord) -> str:
    """One-line description of a match for display"""
    if record.match_type == MatchType.CONTEXT:
        return "Same source URL + page URL"
    if record.match_type == MatchType.EXACT:
        return "Identical file"

    matched = ', '.join(record.matched_hashes) or 'unknown'
    return (f"{record.similarity or 0.0:.1f}% similar "
            f"({record.vote_count or 0}/{PERCEPTUAL_HASH_COUNT} hashes: {matched})")


class DuplicateReportGenerator:
    """
    Render match reports for people: console text, JSON and HTML
    """

    def __init__(self, max_examples: int = MAX_EXAMPLES):
        self.max_examples = max_examples

    def _sections(self, report: MatchReport):
        for match_type in MatchType:
            matches = report.by_type(match_type)
            if matches:
                yield match_type, matches[:self.max_examples], len(matches) - self.max_examples

    def summary_text(self, report: MatchReport) -> str:
        """
        Breakdown by match type, listing at most max_examples per type
        """
        total = len(report.all_matches)
        if total == 0:
            return "No duplicates found"

        lines = [f"Duplicate image detected! ({total} match{'es' if total != 1 else ''} found)", ""]

        for match_type, shown, remaining in self._sections(report):
            lines.append(f"{_SECTION_TITLES[match_type]} ({len(shown) + max(remaining, 0)}):")
            for i, record in enumerate(shown, 1):
                lines.append(f"  {i}. {describe_match(record)} [id: {record.matched_id}]")
            if remaining > 0:
                lines.append(f"  ... and {remaining} more")
            lines.append("")

        return "\n".join(lines).rstrip()

    def save_json(self, report: MatchReport, output_path: str):
        """Save the full report as JSON"""
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(report.to_dict(), f, indent=2, default=str)

    def generate_report(self,
                        report: MatchReport,
                        output_path: str = "duplicate_report.html"):
        """
        Generate HTML report with the match breakdown
        """
        html_content = self._create_html_template()

        counts = report.counts()
        stats_html = f"""
        <div class="statistics">
            <h2>Duplicate Check Summary</h2>
            <p><strong>Verdict:</strong> {'Duplicate' if report.is_duplicate else 'Unique'}</p>
            <p><strong>Corpus entries checked:</strong> {report.corpus_size}</p>
            <p><strong>Context matches:</strong> {counts[MatchType.CONTEXT]}</p>
            <p><strong>Exact matches:</strong> {counts[MatchType.EXACT]}</p>
            <p><strong>Visual matches:</strong> {counts[MatchType.VISUAL]}</p>
        </div>
        """

        groups_html = "<div class='match-groups'>"
        for match_type, shown, remaining in self._sections(report):
            groups_html += self._create_group_html(match_type, shown, remaining)
        groups_html += "</div>"

        final_html = html_content.replace("{{STATS}}", stats_html)
        final_html = final_html.replace("{{GROUPS}}", groups_html)

        with open(output_path, 'w') as f:
            f.write(final_html)

    def _create_group_html(self, match_type: MatchType,
                           shown: List[MatchRecord], remaining: int) -> str:
        """Create HTML for one match type"""
        group_html = f"""
        <div class="match-group {match_type.value}">
            <h3>{_SECTION_TITLES[match_type]} ({len(shown) + max(remaining, 0)})</h3>
            <ol>
        """

        for record in shown:
            group_html += (f"<li>{html.escape(describe_match(record))} "
                           f"<span class=\"match-id\">{html.escape(str(record.matched_id))}</span>")
            if record.hash_votes:
                group_html += "<ul class=\"votes\">"
                for name, vote in record.hash_votes.items():
                    distance = vote.to_dict()['distance']
                    group_html += (f"<li>{name}: distance {distance}, "
                                   f"{vote.similarity:.1f}% {'&#10003;' if vote.matched else '&#10007;'}</li>")
                group_html += "</ul>"
            group_html += "</li>"

        group_html += "</ol>"
        if remaining > 0:
            group_html += f"<p class=\"more\">... and {remaining} more</p>"
        group_html += "</div>"

        return group_html

    def _create_html_template(self) -> str:
        """HTML template for report"""
        return """
        <!DOCTYPE html>
        <html>
        <head>
            <title>Duplicate Check Report</title>
            <style>
                body { font-family: Arial, sans-serif; margin: 20px; }
                .statistics { background: #f0f0f0; padding: 20px; border-radius: 5px; }
                .match-group { border: 1px solid #ccc; margin: 20px 0; padding: 15px; }
                .match-group.context { background: #e3f2fd; }
                .match-group.exact { background: #ffebee; }
                .match-group.visual { background: #fff8e1; }
                .match-id { font-family: monospace; color: #666; }
                .votes { font-size: 0.9em; color: #444; }
                .more { font-style: italic; color: #666; }
            </style>
        </head>
        <body>
            <h1>Image Duplicate Check Report</h1>
            {{STATS}}
            {{GROUPS}}
        </body>
        </html>
        """
