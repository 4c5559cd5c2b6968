#!/usr/bin/env python3
"""
GTM Custom HTML Security
Static checks on the inline script of Custom HTML tags: dynamic code with
network access, DOM injection, PII in outbound URLs, tight timers, wildcard
postMessage, page-view DOM access and long blocks without try/catch.

Scripts are only scanned as text, never executed.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from gtm_container import GTMContainer, Issue, SEVERITY_RANK, Tag, status_message, worst_severity
from gtm_quality_config import QualityConfig
from gtm_taxonomy import builtin_trigger_family

logger = logging.getLogger(__name__)

# Global eval, bare or through window/self/globalThis; obj.eval() methods are not code eval
GLOBAL_EVAL = re.compile(r'(?<![\w$.])(?:(?:window|self|globalThis|top|parent)\s*\.\s*)?eval\s*\(')
NEW_FUNCTION = re.compile(r'\bnew\s+Function\s*\(')
NETWORK_CALL = re.compile(r'\bfetch\s*\(|\bXMLHttpRequest\b|\.send\s*\(|\bsendBeacon\s*\(')
DOCUMENT_WRITE = re.compile(r'document\.write(?:ln)?\s*\(')
INNER_HTML = re.compile(r'\.(?:inner|outer)HTML\s*(\+?=)(?!=)\s*([^;\n]+)')
SANITIZER_CALL = re.compile(r'\b(?:DOMPurify\.sanitize|sanitize\w*|escape(?:Html|HTML)\w*)\s*\(')
DOM_ACCESS = re.compile(
    r'\b(?:querySelector(?:All)?|getElementById|getElementsBy\w+|appendChild|insertBefore|'
    r'insertAdjacentHTML|createElement)\s*\(|\bdocument\.(?:body|head|forms)\b'
)
TRY_BLOCK = re.compile(r'\btry\s*\{')

STRING_LITERAL = re.compile(r'''^\s*(?:'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*"|`(?:\\.|[^`\\$]|\$(?!\{))*`)\s*$''')
INTEGER_LITERAL = re.compile(r'^\s*(\d+)\s*$')
WILDCARD_ORIGIN = re.compile(r'''^\s*(['"`])\*\1\s*$''')

EMAIL_LITERAL = re.compile(r'[\w.+-]+@[\w-]+\.[\w.-]+')
PHONE_LITERAL = re.compile(r'\+\d{8,15}\b|\b\d{3}[-.\s]\d{3}[-.\s]\d{4}\b')
PII_QUERY_KEY = re.compile(r'[?&](?:email|e-?mail|mail|phone|tel)=', re.I)
PII_IDENTIFIER = re.compile(r'(?<![\'"\w$])[\w$]*(?:email|mail|phone|mobile)[\w$]*', re.I)

HOSTNAME = re.compile(r'''(?:https?:|(?<=['"(=]))//([A-Za-z0-9.-]+\.[A-Za-z]{2,})''', re.I)
INSECURE_URL = re.compile(r'''http://[^\s"'<>)]+''', re.I)
SCRIPT_TAG = re.compile(r'</?script[^>]*>', re.I)
FUNCTION_START = re.compile(r'\bfunction\b[^{;]*\{|=>\s*\{')

PAGE_LOAD_FAMILIES = ('PAGEVIEW', 'DOM_READY', 'WINDOW_LOADED')

SUGGESTIONS = {
    'eval_network': 'Remove eval()/new Function() and keep network calls on static code paths',
    'dynamic_code': 'Remove eval() and new Function(); use safe DOM APIs',
    'innerhtml_injection': 'Sanitize dynamic markup or use textContent/createElement',
    'pii_leak': 'Do not send email addresses or phone numbers in request URLs',
    'tight_timer': 'Raise the timer interval or use event-driven callbacks',
    'postmessage_wildcard': 'Pass the expected origin to postMessage instead of "*"',
    'pageview_dom': 'Fire DOM-dependent scripts on DOM Ready or Window Loaded',
    'no_try_catch': 'Wrap long blocks in try/catch so errors cannot break the page',
    'document_write': 'Replace document.write() with createElement/appendChild',
    'insecure_request': 'Load every resource over HTTPS',
}


def find_call_arguments(code: str, callee: str) -> List[List[str]]:
    """Return the top-level argument strings of every call to `callee`"""
    calls = []
    for match in re.finditer(r'(?<![\w$])' + callee + r'\s*\(', code):
        args = _split_arguments(code, match.end())
        if args is not None:
            calls.append(args)
    return calls


def _split_arguments(code: str, start: int) -> Optional[List[str]]:
    # Walk to the closing paren, skipping strings and nested brackets
    depth = 0
    quote = None
    args = []
    current = []
    i = start
    while i < len(code):
        ch = code[i]
        if quote:
            current.append(ch)
            if ch == '\\' and i + 1 < len(code):
                current.append(code[i + 1])
                i += 1
            elif ch == quote:
                quote = None
        elif ch in '\'"`':
            quote = ch
            current.append(ch)
        elif ch in '([{':
            depth += 1
            current.append(ch)
        elif ch in ')]}':
            if depth == 0:
                args.append(''.join(current).strip())
                return [arg for arg in args if arg]
            depth -= 1
            current.append(ch)
        elif ch == ',' and depth == 0:
            args.append(''.join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    return None


def strip_strings_and_comments(code: str) -> str:
    """Blank out string contents and comments so braces and semicolons can be counted"""
    out = []
    i = 0
    quote = None
    while i < len(code):
        ch = code[i]
        if quote:
            if ch == '\\':
                i += 2
                continue
            if ch == quote:
                quote = None
                out.append(ch)
            i += 1
            continue
        if ch in '\'"`':
            quote = ch
            out.append(ch)
        elif code.startswith('//', i) and (i == 0 or code[i - 1] != ':'):
            end = code.find('\n', i)
            i = len(code) if end == -1 else end
            continue
        elif code.startswith('/*', i):
            end = code.find('*/', i + 2)
            i = len(code) if end == -1 else end + 2
            continue
        else:
            out.append(ch)
        i += 1
    return ''.join(out)


def count_statements(block: str) -> int:
    fragments = re.split(r'[;\n{}]', block)
    return sum(1 for fragment in fragments if fragment.strip())


def _function_bodies(code: str) -> List[str]:
    bodies = []
    for match in FUNCTION_START.finditer(code):
        depth = 1
        i = match.end()
        while i < len(code) and depth:
            if code[i] == '{':
                depth += 1
            elif code[i] == '}':
                depth -= 1
            i += 1
        bodies.append(code[match.end():i - 1])
    return bodies


def has_long_block_without_try(code: str, max_statements: int) -> bool:
    """Top-level script or a function body above the limit with no try/catch"""
    cleaned = strip_strings_and_comments(SCRIPT_TAG.sub('\n', code))
    for block in [cleaned] + _function_bodies(cleaned):
        if count_statements(block) > max_statements and not TRY_BLOCK.search(block):
            return True
    return False


def extract_hostnames(code: str) -> List[str]:
    """Hostnames of absolute and protocol-relative URLs, first-seen order"""
    hosts = []
    for match in HOSTNAME.finditer(code):
        host = match.group(1).lower().rstrip('.')
        if host not in hosts:
            hosts.append(host)
    return hosts


def _is_literal(expression: str) -> bool:
    return bool(STRING_LITERAL.match(expression))


def _outbound_urls(code: str) -> List[str]:
    """First argument of fetch / sendBeacon / xhr.open and assigned .src values"""
    urls = []
    for callee in (r'fetch', r'\w*\.?sendBeacon', r'\w+\.open'):
        for args in find_call_arguments(code, callee):
            if not args:
                continue
            # xhr.open(method, url)
            if callee.endswith('open') and len(args) > 1:
                urls.append(args[1])
            else:
                urls.append(args[0])
    for match in re.finditer(r'\.src\s*=(?!=)\s*([^;\n]+)', code):
        urls.append(match.group(1))
    return urls


def _pii_in_url(expression: str) -> bool:
    if EMAIL_LITERAL.search(expression) or PHONE_LITERAL.search(expression):
        return True
    if PII_QUERY_KEY.search(expression):
        return True
    # Identifiers outside string literals
    unquoted = re.sub(r'''(['"`])(?:\\.|(?!\1).)*\1''', '""', expression)
    return bool(PII_IDENTIFIER.search(unquoted))


def scan_script(code: str, fires_on: str, config: QualityConfig) -> List[Dict]:
    """Apply the ordered rule set and return [{type, severity, message, url?}]"""
    findings = []

    def add(finding_type, severity, message, url=None):
        finding = {'type': finding_type, 'severity': severity, 'message': message}
        if url:
            finding['url'] = url
        findings.append(finding)

    has_dynamic = bool(GLOBAL_EVAL.search(code) or NEW_FUNCTION.search(code))
    if has_dynamic and NETWORK_CALL.search(code):
        add('eval_network', 'critical', 'eval()/new Function() combined with a network call')

    sanitized = bool(SANITIZER_CALL.search(code))
    if not sanitized:
        injected = any(not _is_literal(rhs) for _, rhs in INNER_HTML.findall(code))
        if not injected:
            injected = any(len(args) > 1 and not _is_literal(args[1])
                           for args in find_call_arguments(code, r'\w*\.?insertAdjacentHTML'))
        if injected:
            add('innerhtml_injection', 'critical', 'Dynamic markup injected into the DOM without sanitizing (XSS)')

    for url in _outbound_urls(code):
        if _pii_in_url(url):
            add('pii_leak', 'critical', 'Outbound request URL may carry an email address or phone number',
                url.strip())
            break

    for timer in ('setInterval', 'setTimeout'):
        for args in find_call_arguments(code, timer):
            if len(args) < 2:
                continue
            interval = INTEGER_LITERAL.match(args[1])
            if interval and int(interval.group(1)) < config.min_timer_interval_ms:
                add('tight_timer', 'major',
                    f'{timer} with a {interval.group(1)}ms interval (below {config.min_timer_interval_ms}ms)')
                break

    for args in find_call_arguments(code, r'\w*\.?postMessage'):
        if len(args) >= 2 and WILDCARD_ORIGIN.match(args[1]):
            add('postmessage_wildcard', 'minor', 'postMessage with targetOrigin "*"')
            break

    if fires_on == 'PAGEVIEW' and DOM_ACCESS.search(code):
        add('pageview_dom', 'minor', 'Touches the DOM while firing on Page View, before the DOM is ready')

    if has_long_block_without_try(code, config.max_statements_without_try):
        add('no_try_catch', 'minor',
            f'Block of more than {config.max_statements_without_try} statements without try/catch')

    if has_dynamic and not any(f['type'] == 'eval_network' for f in findings):
        add('dynamic_code', 'major', 'Uses eval() or new Function(), a code injection risk')

    if DOCUMENT_WRITE.search(code):
        add('document_write', 'major', 'Uses document.write(), which blocks rendering')

    for url in INSECURE_URL.findall(code):
        add('insecure_request', 'major', 'Loads a resource over plain HTTP', url.rstrip('.,;!?'))
        break

    return findings


def infer_fires_on(tag: Tag, trigger_by_id: Dict) -> str:
    """Page-load family of the first firing trigger that has one"""
    fallback = None
    for trigger_id in tag.firing_trigger_ids:
        trigger = trigger_by_id.get(trigger_id)
        family = trigger.family if trigger is not None else builtin_trigger_family(trigger_id)
        if not family:
            continue
        if family in PAGE_LOAD_FAMILIES:
            return family
        if fallback is None:
            fallback = family
    return fallback or 'UNKNOWN'


def _suggestion(findings: List[Dict]) -> str:
    seen = []
    for finding in findings:
        text = SUGGESTIONS.get(finding['type'])
        if text and text not in seen:
            seen.append(text)
    return '; '.join(seen)


def analyze_html_security(container: GTMContainer, config: QualityConfig = None) -> Dict:
    """Analyze the Custom HTML tags of a container"""
    config = config or QualityConfig()
    trigger_by_id = container.trigger_by_id()
    html_tags = [tag for tag in container.tags if tag.type_lower == 'html']

    result = {
        'checked': len(html_tags),
        'critical': 0,
        'major': 0,
        'minor': 0,
        'details': [],
        'third_parties': [],
        'score': 1.0,
    }
    issues = []

    for tag in html_tags:
        code = tag.html
        if not code:
            continue

        for host in extract_hostnames(code):
            if host not in result['third_parties']:
                result['third_parties'].append(host)

        fires_on = infer_fires_on(tag, trigger_by_id)
        findings = scan_script(code, fires_on, config)
        if not findings:
            continue

        severity = worst_severity(f['severity'] for f in findings)
        result[severity] += 1
        suggestion = _suggestion(findings)
        result['details'].append({
            'id': tag.tag_id,
            'name': tag.name,
            'severity': severity,
            'issues': findings,
            'suggestion': suggestion,
            'fires_on': fires_on,
            'paused': tag.paused,
        })
        issues.append(Issue(
            entity_id=tag.tag_id,
            entity_type='tag',
            name=tag.name,
            categories=[f'html_security_{severity}'],
            severity=severity,
            reason='; '.join(f['message'] for f in findings),
            suggestion=suggestion,
            meta={'finding_types': [f['type'] for f in findings]},
        ))

    weights = config.html_severity_weights
    penalty = sum(result[level] * weights.get(level, 0) for level in SEVERITY_RANK)
    result['score'] = max(0.0, 1 - penalty / max(result['checked'], 1))

    logger.debug('HTML security: %d tags checked, %d critical', result['checked'], result['critical'])

    return {
        'html_security': result,
        'issues': issues,
        'message': _html_message(result),
    }


def _html_message(result: Dict) -> Dict[str, str]:
    if result['checked'] == 0:
        return status_message('Custom HTML security', 'ok', 'No Custom HTML tags',
                              'Nothing to review')

    for status in ('critical', 'major', 'minor'):
        if result[status]:
            break
    else:
        status = 'ok'

    flagged = result['critical'] + result['major'] + result['minor']
    summary = (f"{flagged} of {result['checked']} Custom HTML tags flagged "
               f"({result['critical']} critical, {result['major']} major, {result['minor']} minor)")
    cta = 'Review Custom HTML' if flagged else 'No risky patterns found'
    return status_message('Custom HTML security', status, summary, cta)


def summarize_findings(details: List[Dict]) -> List[Tuple[str, int]]:
    """Finding types across all flagged tags, most frequent first"""
    counts = {}
    for detail in details:
        for finding in detail['issues']:
            counts[finding['type']] = counts.get(finding['type'], 0) + 1
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))
