import pandas as pd
import pytest

from gtm_container import SEVERITY_RANK
from gtm_quality_engine import analyze_container
from gtm_quality_report import (COLORS, ISSUE_COLUMNS, breakdown_frame, category_summary_frame,
                                issues_frame, print_quality_report, score_color, status_meta,
                                write_issues_csv)


@pytest.fixture
def report(sample_export):
    return analyze_container(sample_export).to_dict()


def test_issues_frame_is_sorted_by_severity(report):
    df = issues_frame(report)
    assert list(df.columns) == ISSUE_COLUMNS
    assert len(df) == report['counts']['issues']
    ranks = [SEVERITY_RANK[severity] for severity in df['severity']]
    assert ranks == sorted(ranks, reverse=True)
    assert df.iloc[0]['severity'] == 'critical'


def test_category_summary(report):
    summary = category_summary_frame(report)
    assert list(summary.columns) == ['category', 'critical', 'major', 'minor', 'total']
    assert summary['total'].sum() == report['counts']['issues']
    paused = summary[summary['category'] == 'paused'].iloc[0]
    assert paused['minor'] == 1


def test_frames_for_an_empty_container():
    report = analyze_container({}).to_dict()
    assert issues_frame(report).empty
    assert list(issues_frame(report).columns) == ISSUE_COLUMNS
    assert category_summary_frame(report).empty
    assert len(breakdown_frame(report)) == 7


def test_print_quality_report(report, capsys):
    print_quality_report(report)
    out = capsys.readouterr().out
    assert 'GTM CONTAINER QUALITY REPORT' in out
    assert f"Quality Score: {report['quality_score']['total']}/100" in out
    assert 'ACTION PLAN:' in out
    assert 'UA -> GA4 MIGRATION:' in out
    assert 'eval_network: 1' in out


def test_print_report_with_unavailable_section(report, capsys):
    report['html_security'] = None
    report['unavailable'] = ['html_security']
    print_quality_report(report)
    out = capsys.readouterr().out
    assert 'Analysis unavailable' in out
    assert 'Unavailable Analyses: html_security' in out


def test_write_issues_csv(report, tmp_path):
    path = tmp_path / 'issues.csv'
    assert write_issues_csv(report, str(path)) == ISSUE_COLUMNS
    df = pd.read_csv(path)
    assert len(df) == report['counts']['issues']


def test_status_meta_and_colors():
    assert status_meta('critical')['label'] == 'Critical'
    assert status_meta('unknown') == status_meta('ok')
    assert score_color(95) == COLORS['success']
    assert score_color(65) == COLORS['warning']
    assert score_color(10) == COLORS['danger']
