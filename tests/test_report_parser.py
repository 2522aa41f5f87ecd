"""
Unit tests for the interpretation report grammar.
"""
from report.parser import (
    BlockKind,
    FindingLine,
    Heading,
    MetricKind,
    MetricTag,
    PlainLine,
    PlainText,
    Severity,
    StatusBanner,
    VerdictBlock,
    parse_line,
    parse_report,
    render_plain,
    to_dict,
)
from services.interpretation import fallback_report

SAMPLE = """### REPORT_STATUS: STABLE

**Summary:** Resting values within expected ranges.

**Clinical Findings:**
*   [BPM: 72] - Normal resting rate.
*   [BP: 118/78] - Within range.
*   [HRV: 52] - Good *autonomic* balance.

**Clinical Recommendations:**
*   Keep hydrated.

**AI Verdict:** Vitals look **stable** and healthy today.
"""


def test_status_line_is_positive_banner():
    assert parse_line("### REPORT_STATUS: STABLE") == StatusBanner(status="STABLE", severity=Severity.POSITIVE)


def test_optimal_is_positive_attention_and_elevated_are_negative():
    assert parse_line("### REPORT_STATUS: OPTIMAL").severity is Severity.POSITIVE
    assert parse_line("### REPORT_STATUS: ATTENTION").severity is Severity.NEGATIVE
    assert parse_line("### REPORT_STATUS: ELEVATED").severity is Severity.NEGATIVE


def test_bracketed_status_label_is_stripped():
    block = parse_line("### [REPORT_STATUS] ATTENTION")
    assert isinstance(block, StatusBanner)
    assert block.status == "ATTENTION"


def test_finding_line_extracts_heart_rate_tag():
    block = parse_line("* [BPM: 72] - Normal rhythm")
    assert isinstance(block, FindingLine)
    assert MetricTag(kind=MetricKind.HR, value="72") in block.segments
    assert PlainText(text=" - Normal rhythm") in block.segments


def test_finding_line_maps_all_tag_kinds_in_order():
    block = parse_line("[BP: 120/80] and [HRV: 40 ms] then [BPM:88]")
    tags = [s for s in block.segments if isinstance(s, MetricTag)]
    assert tags == [
        MetricTag(MetricKind.BP, "120/80"),
        MetricTag(MetricKind.HRV, "40 ms"),
        MetricTag(MetricKind.HR, "88"),
    ]


def test_finding_plain_text_has_emphasis_removed():
    block = parse_line("*   [HRV: 52] - Good *autonomic* balance.")
    texts = [s.text for s in block.segments if isinstance(s, PlainText)]
    assert texts == [" - Good autonomic balance."]


def test_unknown_bracket_stays_plain_text():
    block = parse_line("[BPM: 60] see [note]")
    assert PlainText(text=" see ") in block.segments
    assert PlainText(text="[note]") in block.segments


def test_status_wins_over_finding_tags():
    block = parse_line("### REPORT_STATUS: STABLE [BPM: 70]")
    assert isinstance(block, StatusBanner)


def test_verdict_block_strips_marker_and_emphasis():
    block = parse_line("**AI Verdict:** Vitals look **stable** today.")
    assert block == VerdictBlock(text="Vitals look stable today.")


def test_bold_line_is_heading():
    assert parse_line("**Clinical Findings:**") == Heading(text="Clinical Findings:")


def test_heading_without_status_keyword_is_not_a_banner():
    assert parse_line("### Clinical Findings") == Heading(text="Clinical Findings")


def test_other_lines_are_plain():
    assert parse_line("*   Keep hydrated.") == PlainLine(text="Keep hydrated.")


def test_blank_lines_produce_nothing():
    assert parse_line("") is None
    assert parse_line("   \t") is None
    assert parse_report("\n\n  \n") == []


def test_one_block_per_non_blank_line_in_order():
    blocks = parse_report(SAMPLE)
    non_blank = [line for line in SAMPLE.splitlines() if line.strip()]
    assert len(blocks) == len(non_blank)
    assert [b.kind for b in blocks] == [
        BlockKind.STATUS,
        BlockKind.HEADING,
        BlockKind.HEADING,
        BlockKind.FINDING,
        BlockKind.FINDING,
        BlockKind.FINDING,
        BlockKind.HEADING,
        BlockKind.PLAIN,
        BlockKind.VERDICT,
    ]


def test_indented_lines_are_recognised():
    blocks = parse_report("      ### REPORT_STATUS: OPTIMAL\n      **AI Verdict:** Fine.")
    assert isinstance(blocks[0], StatusBanner)
    assert isinstance(blocks[1], VerdictBlock)


def test_fallback_report_parses_with_tags(vitals):
    blocks = parse_report(fallback_report(vitals))
    assert blocks[0] == StatusBanner(status="STABLE", severity=Severity.POSITIVE)
    findings = [b for b in blocks if isinstance(b, FindingLine)]
    assert MetricTag(MetricKind.HR, "72") in findings[0].segments
    assert MetricTag(MetricKind.BP, "118/78") in findings[1].segments
    assert isinstance(blocks[-1], VerdictBlock)


def test_to_dict_flattens_enums():
    data = to_dict(parse_line("* [BPM: 72] - ok"))
    assert data["kind"] == "finding"
    assert data["segments"][0] == {"type": "metric", "kind": "HR", "value": "72"}
    banner = to_dict(parse_line("### REPORT_STATUS: ELEVATED"))
    assert banner == {"status": "ELEVATED", "severity": "negative", "kind": "status"}


def test_render_plain_contains_tags_and_verdict():
    text = render_plain(parse_report(SAMPLE))
    assert "[ VITAL STATUS: STABLE ]" in text
    assert "<HR: 72>" in text
    assert 'FINAL VERDICT: "Vitals look stable and healthy today."' in text
