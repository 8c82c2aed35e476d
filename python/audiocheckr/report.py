"""Text and JSON rendering of analysis results."""
import json
from typing import Any, Dict, List, Optional

from .types import AnalysisResult, Finding

_ICONS = {
    'critical': '✗',
    'warning': '!',
    'info': '•',
}


def _finding_to_dict(finding: Finding) -> Dict[str, Any]:
    d = {
        'detector': finding.detector.value,
        'severity': finding.severity.value,
        'confidence': round(finding.confidence, 4),
        'raw_confidence': round(finding.raw_confidence, 4),
        'summary': finding.summary,
        'evidence': list(finding.evidence),
        'data': finding.data,
    }
    if finding.suppressed_reason:
        d['suppressed_reason'] = finding.suppressed_reason
    return d


def result_to_dict(result: AnalysisResult, path: Optional[str] = None,
                   include_suppressed: bool = True) -> Dict[str, Any]:
    d: Dict[str, Any] = {}
    if path is not None:
        d['file'] = path
    d.update({
        'verdict': result.verdict.value,
        'quality_score': result.quality_score,
        'profile': result.profile_name,
        'sample_rate': result.sample_rate,
        'bit_depth': result.bit_depth,
        'duration': round(result.duration, 3),
        'insufficient_data': result.insufficient_data,
        'findings': [_finding_to_dict(f) for f in result.findings],
        'skipped': list(result.skipped),
        'errors': list(result.errors),
    })
    if include_suppressed:
        d['suppressed'] = [_finding_to_dict(f) for f in result.suppressed]
    return d


def format_json(results, indent: int = 2) -> str:
    """Serialize one result dict or a list of them."""
    return json.dumps(results, indent=indent)


def _format_finding(finding: Finding, lines: List[str], show_reason: bool = False) -> None:
    icon = _ICONS[finding.severity.value]
    lines.append(f"  {icon} [{finding.severity.value.upper()}] {finding.summary} "
                 f"({finding.confidence * 100:.0f}%)")
    for item in finding.evidence:
        lines.append(f"      - {item}")
    if show_reason and finding.suppressed_reason:
        lines.append(f"      ({finding.suppressed_reason})")


def format_text(result: AnalysisResult, path: Optional[str] = None,
                show_suppressed: bool = False) -> str:
    lines = [f"\n{'='*60}", "  Audio Quality Report", f"{'='*60}\n"]
    if path is not None:
        lines.append(f"File: {path}")
    lines.append(f"Format: {result.sample_rate} Hz, {result.bit_depth}-bit, {result.duration:.2f}s")
    lines.append(f"Profile: {result.profile_name}")
    lines.append(f"Verdict: {result.verdict.value.replace('_', ' ').upper()}")
    if result.quality_score is None:
        lines.append("Quality score: n/a")
    else:
        lines.append(f"Quality score: {result.quality_score * 100:.0f}%")

    if result.findings:
        lines.append("\nFindings:")
        for finding in result.findings:
            _format_finding(finding, lines)
    else:
        lines.append("\nNo issues found.")

    if show_suppressed and result.suppressed:
        lines.append("\nSuppressed:")
        for finding in result.suppressed:
            _format_finding(finding, lines, show_reason=True)

    if result.errors:
        lines.append("\nErrors:")
        for error in result.errors:
            lines.append(f"  • {error}")

    lines.append(f"\n{'='*60}\n")
    return "\n".join(lines)
