#!/usr/bin/env python3
"""
GTM Container Quality Pipeline
Analyzes a GTM export, prints the quality report and saves it as JSON.

Usage:
    python run_gtm_quality.py <path_to_gtm_export.json> [options]

Options:
    --debug              Show debug logging during analysis
    --config FILE        JSON file overriding weights and thresholds
    --csv                Also save the issue table as CSV
    --output-dir DIR     Output directory for generated files (default: same as input)
"""

import json
import logging
import os
import re
import sys

from gtm_quality_config import ConfigurationError, QualityConfig, load_config
from gtm_quality_engine import analyze_container
from gtm_quality_report import print_quality_report, write_issues_csv

VALUE_OPTIONS = ('--config', '--output-dir')
FLAG_OPTIONS = ('--debug', '--csv')


def validate_filename(file_path):
    """
    Validate that the filename doesn't contain copy indicators like (1), (2), etc.
    These appear when files are duplicated by the OS (e.g. downloaded twice)
    and usually mean the export is stale.
    """
    basename = os.path.basename(file_path)

    copy_pattern = re.compile(r'\(\d+\)')
    match = copy_pattern.search(basename)
    if not match:
        return True

    # "file (1).json" -> "file.json"
    clean_name = copy_pattern.sub('', basename)
    clean_name = re.sub(r'  +', ' ', clean_name).strip()
    clean_name = re.sub(r' \.', '.', clean_name)

    print(f"ERROR: The filename '{basename}' contains a copy indicator '{match.group()}'.")
    print("  This usually means the file is a duplicate created by your OS.")
    print(f"  Rename the file to: {clean_name}")
    clean_path = os.path.join(os.path.dirname(file_path), clean_name)
    if os.path.exists(clean_path):
        print(f"  NOTE: '{clean_name}' already exists in the same directory; you may want to use that one.")
    return False


def parse_arguments(argv):
    """Split argv into the input path and an options dict"""
    options = {'debug': False, 'csv': False, 'config': None, 'output_dir': None}
    file_path = None
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in FLAG_OPTIONS:
            options[arg[2:].replace('-', '_')] = True
        elif arg in VALUE_OPTIONS:
            if i + 1 >= len(argv):
                raise ValueError(f'{arg} needs a value')
            options[arg[2:].replace('-', '_')] = argv[i + 1]
            i += 1
        elif arg.startswith('--'):
            raise ValueError(f'Unknown option: {arg}')
        elif file_path is None:
            file_path = arg
        else:
            raise ValueError(f'Unexpected argument: {arg}')
        i += 1
    return file_path, options


def output_paths(file_path, output_dir=None):
    """Report paths next to the input file, or inside output_dir"""
    base_name = os.path.basename(file_path)
    if base_name.endswith('.json'):
        base_name = base_name[:-5]
    directory = output_dir or os.path.dirname(file_path) or '.'
    return (os.path.join(directory, f'{base_name}_quality_report.json'),
            os.path.join(directory, f'{base_name}_quality_issues.csv'))


def run_quality_analysis(file_path, config=None, output_dir=None, write_csv=False):
    """Analyze the export, print the report and save the output files"""
    with open(file_path, 'r', encoding='utf-8') as f:
        gtm_data = json.load(f)

    analysis = analyze_container(gtm_data, config)
    report = analysis.to_dict()
    print_quality_report(report)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    report_file, csv_file = output_paths(file_path, output_dir)
    with open(report_file, 'w', encoding='utf-8') as f:
        json.dump(report, f, indent=2, ensure_ascii=False)
    print(f"\nQuality report saved to: {report_file}")

    if write_csv:
        write_issues_csv(report, csv_file)
        print(f"Issue table saved to: {csv_file}")
    else:
        csv_file = None

    return report, report_file, csv_file


def print_usage():
    print("GTM Container Quality Pipeline")
    print("=" * 40)
    print()
    print(f"Usage: python {os.path.basename(__file__)} <path_to_gtm_export.json> [options]")
    print()
    print("Options:")
    print("  --debug              Show debug logging during analysis")
    print("  --config FILE        JSON file overriding weights and thresholds")
    print("  --csv                Also save the issue table as CSV")
    print("  --output-dir DIR     Output directory for generated files")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    try:
        file_path, options = parse_arguments(argv)
    except ValueError as e:
        print(f"ERROR: {e}")
        print_usage()
        return 1

    if not file_path:
        print_usage()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if options['debug'] else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    # --- Step 0: Validate the input ---
    if not os.path.exists(file_path):
        print(f"ERROR: File '{file_path}' not found.")
        return 1

    if not file_path.endswith('.json'):
        print("ERROR: Input file must be a .json GTM export file.")
        return 1

    if not validate_filename(file_path):
        return 1

    config = QualityConfig()
    if options['config']:
        try:
            config = load_config(options['config'])
        except ConfigurationError as e:
            print(f"ERROR: {e}")
            return 1

    # --- Step 1: Analyze ---
    print("=" * 80)
    print("STEP 1: Analyzing GTM container quality")
    print("=" * 80)
    print()

    try:
        report, report_file, csv_file = run_quality_analysis(
            file_path, config, options['output_dir'], options['csv'])
    except json.JSONDecodeError as e:
        print(f"ERROR: Invalid JSON file. {e}")
        return 1
    except OSError as e:
        print(f"ERROR: Could not read or write files. {e}")
        return 1

    # --- Summary ---
    print()
    print("=" * 80)
    print("PIPELINE COMPLETE")
    print("=" * 80)
    print(f"  Input file:      {file_path}")
    print(f"  Quality score:   {report['quality_score']['total']}/100")
    print(f"  Quality report:  {report_file}")
    if csv_file:
        print(f"  Issue table:     {csv_file}")
    print()
    return 0


if __name__ == '__main__':
    sys.exit(main())
