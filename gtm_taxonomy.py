#!/usr/bin/env python3
"""
GTM Tag Taxonomy
Classifies tags as marketing, core, UX or Universal Analytics and holds the
human-readable type names shared by the analyzers and the report.
"""

import re
from typing import List, Optional, Tuple

from gtm_container import Tag

AD_CONSENTS = ('ad_storage', 'ad_user_data', 'ad_personalization')
ANALYTICS_CONSENTS = ('analytics_storage',)
ALL_CONSENTS = ANALYTICS_CONSENTS + AD_CONSENTS

# Tag type -> (required consents, vendor). Keys ending in '_' are prefixes.
MARKETING_TAG_TYPES = {
    # Google Analytics
    'gaawe': (ANALYTICS_CONSENTS, 'Google Analytics'),
    'gaawc': (ANALYTICS_CONSENTS, 'Google Analytics'),
    'gtag': (ANALYTICS_CONSENTS, 'Google Analytics'),
    # Google Ads
    'awct': (AD_CONSENTS, 'Google Ads'),
    'awctc': (AD_CONSENTS, 'Google Ads'),
    'aw_remarketing': (AD_CONSENTS, 'Google Ads'),
    'aw_conversion': (AD_CONSENTS, 'Google Ads'),
    # Floodlight
    'dc_': (AD_CONSENTS, 'Floodlight'),
    'g_doubleclick_': (AD_CONSENTS, 'Floodlight'),
    # Social / ad platforms
    'facebook_': (AD_CONSENTS, 'Meta'),
    'meta_': (AD_CONSENTS, 'Meta'),
    'linkedin_': (AD_CONSENTS, 'LinkedIn'),
    'bing_': (AD_CONSENTS, 'Bing'),
    'msclkid_': (AD_CONSENTS, 'Bing'),
    'tiktok_': (AD_CONSENTS, 'TikTok'),
    'ttq_': (AD_CONSENTS, 'TikTok'),
    # Other analytics tools
    'hotjar_': (ANALYTICS_CONSENTS, 'Hotjar'),
    'optimize_': (ANALYTICS_CONSENTS, 'Google Optimize'),
    'vwo_': (ANALYTICS_CONSENTS, 'VWO'),
}

# Ad platform snippets found in Custom HTML tags
MARKETING_HTML_PATTERNS = [
    re.compile(r'connect\.facebook\.net', re.I),
    re.compile(r'www\.googletagmanager\.com/gtag/js.*config.*ads', re.I),
    re.compile(r'googleads\.g\.doubleclick\.net', re.I),
    re.compile(r'fls\.doubleclick\.net', re.I),
    re.compile(r'bat\.bing\.com', re.I),
    re.compile(r'snap\.sc', re.I),
    re.compile(r'static\.hotjar\.com', re.I),
    re.compile(r'analytics\.tiktok\.com', re.I),
    re.compile(r'px\.ads\.linkedin\.com', re.I),
]

AD_HTML_MARKERS = ('googleads', 'facebook', 'doubleclick', 'bing')

MARKETING_KEYWORDS = [
    'facebook', 'meta', 'pixel', 'google ads', 'ads', 'remarketing',
    'conversion', 'floodlight', 'linkedin', 'bing', 'tiktok', 'hotjar',
    'optimize', 'vwo', 'analytics', 'gtag', 'ga4',
]

# Narrower set for blocking-trigger review: ad platforms only, no analytics
BLOCKING_REVIEW_TAG_TYPES = (
    'awct', 'awctc', 'aw_remarketing', 'aw_conversion',
    'facebook_', 'meta_', 'linkedin_', 'bing_', 'tiktok_', 'ttq_',
    'hotjar_', 'optimize_', 'vwo_',
)
BLOCKING_REVIEW_HTML_PATTERNS = [
    re.compile(r'connect\.facebook\.net', re.I),
    re.compile(r'googleads\.g\.doubleclick\.net', re.I),
    re.compile(r'fls\.doubleclick\.net', re.I),
    re.compile(r'bat\.bing\.com', re.I),
    re.compile(r'analytics\.tiktok\.com', re.I),
    re.compile(r'px\.ads\.linkedin\.com', re.I),
]
BLOCKING_REVIEW_KEYWORDS = [keyword for keyword in MARKETING_KEYWORDS
                            if keyword not in ('analytics', 'gtag', 'ga4')]

# Trigger ids GTM provides without a trigger entity in the export
BUILTIN_TRIGGER_IDS = {
    '2147479553': ('All Pages', 'PAGEVIEW'),
    '2147479572': ('Consent Initialization - All Pages', 'CONSENT_INIT'),
    '2147479573': ('Initialization - All Pages', 'INIT'),
}

# GA4 / Google tag types handle analytics consent themselves
CONSENT_AWARE_TYPES = ('gaawc', 'gaawe', 'googtag', 'gtag')

CORE_TAG_TYPES = ('gaawc', 'ga4_config', 'gtag')
CORE_KEYWORDS = ('consent', 'sgtm', 'server', 'init', 'client')
UX_KEYWORDS = ('video', 'heatmap', 'ux', 'hotjar', 'fullstory', 'logrocket')

UA_TAG_TYPES = ('ua', 'ga')
UA_NAME_PATTERNS = [
    re.compile(r'universal\s+analytics', re.I),
    re.compile(r'\bUA-\d{4,}-\d+\b', re.I),
    re.compile(r'analytics\.js', re.I),
    re.compile(r'\bga\.js\b', re.I),
    re.compile(r'(?<![A-Za-z0-9])UA(?![A-Za-z0-9])'),
]

TAG_TYPE_NAMES = {
    'html': 'Custom HTML',
    'img': 'Custom Image',
    'ua': 'Universal Analytics',
    'ga': 'Google Analytics (Classic)',
    'gaawe': 'GA4 Event',
    'googtag': 'Google Tag',
    'gaawc': 'GA4 Configuration',
    'flc': 'Floodlight Counter',
    'fls': 'Floodlight Sales',
    'awct': 'Google Ads Conversion',
    'sp': 'Google Ads Remarketing',
    'gclidw': 'Conversion Linker',
    'opt': 'Optimize',
    'baut': 'Bing Ads',
    'hjtc': 'Hotjar',
    'll': 'LinkedIn Insight',
    'ta': 'TikTok Analytics',
}

VARIABLE_TYPE_NAMES = {
    'v': 'Data Layer Variable',
    'k': 'Cookie',
    'u': 'URL',
    'f': 'Referrer',
    'e': 'Event',
    'j': 'JavaScript Variable',
    'jsm': 'Custom JavaScript',
    'd': 'DOM Element',
    'c': 'Constant',
    'gas': 'Google Analytics Settings',
    'r': 'Random Number',
    'aev': 'Auto-Event Variable',
    'vis': 'Element Visibility',
    'smm': 'Lookup Table',
    'remm': 'Regex Table',
    'ed': 'Event Data',
    'uv': 'Undefined Value',
}

TRIGGER_FAMILY_NAMES = {
    'PAGEVIEW': 'Page View',
    'DOM_READY': 'DOM Ready',
    'WINDOW_LOADED': 'Window Loaded',
    'HISTORY_CHANGE': 'History Change',
    'CUSTOM_EVENT': 'Custom Event',
    'CLICK': 'Click - All Elements',
    'LINK_CLICK': 'Click - Just Links',
    'FORM_SUBMISSION': 'Form Submission',
    'ELEMENT_VISIBILITY': 'Element Visibility',
    'SCROLL_DEPTH': 'Scroll Depth',
    'TIMER': 'Timer',
    'YOU_TUBE_VIDEO': 'YouTube Video',
    'JS_ERROR': 'JavaScript Error',
    'TRIGGER_GROUP': 'Trigger Group',
    'INIT': 'Initialization',
    'CONSENT_INIT': 'Consent Initialization',
}

# Built-in variables GTM exposes without a variable entity
BUILTIN_VARIABLE_NAMES = {
    'Event', 'Event Name', 'Page URL', 'Page Hostname', 'Page Path', 'Referrer',
    'Click Element', 'Click Classes', 'Click ID', 'Click URL', 'Click Text', 'Click Target',
    'Container ID', 'Container Version', 'Debug Mode', 'Random Number',
    'HTML ID', 'Environment Name', 'Client Name', 'Client ID', 'IP Address',
    'User Agent', 'Error Message', 'Error Line', 'Error URL', 'Debug Error',
    'Form Element', 'Form Classes', 'Form ID', 'Form Target', 'Form URL',
    'Form Text', 'History Source', 'New History Fragment', 'New History State',
    'New History URL', 'Old History Fragment', 'Old History State',
    'Old History URL', 'Video Current Time', 'Video Duration', 'Video Percent',
    'Video Provider', 'Video Status', 'Video Title', 'Video URL',
    'Video Visible', 'Scroll Depth Threshold', 'Scroll Depth Units',
    'Scroll Direction', 'Element Visibility Ratio', 'Element Visibility Time',
    'Element Visibility First Time', 'Element Visibility Recent Time',
    'Percent Visible', 'On Screen Duration',
}


def _lookup_marketing_type(tag_type: str) -> Optional[Tuple[Tuple[str, ...], str]]:
    if tag_type in MARKETING_TAG_TYPES:
        return MARKETING_TAG_TYPES[tag_type]
    for prefix, entry in MARKETING_TAG_TYPES.items():
        if prefix.endswith('_') and tag_type.startswith(prefix):
            return entry
    return None


def has_marketing_html(tag: Tag) -> bool:
    html = tag.html
    return bool(html) and any(pattern.search(html) for pattern in MARKETING_HTML_PATTERNS)


def is_marketing_tag(tag: Tag) -> bool:
    """Tag types, ad platform snippets and name keywords mark a tag as marketing"""
    tag_type = tag.type_lower
    if _lookup_marketing_type(tag_type):
        return True
    if tag_type == 'html' and tag.html:
        if has_marketing_html(tag):
            return True
    name = tag.name.lower()
    return any(keyword in name or keyword in tag_type for keyword in MARKETING_KEYWORDS)


def is_ad_platform_tag(tag: Tag) -> bool:
    """Marketing tags whose blocking triggers deserve review (GA4 excluded)"""
    tag_type = tag.type_lower
    if tag_type in BLOCKING_REVIEW_TAG_TYPES:
        return True
    if any(prefix.endswith('_') and tag_type.startswith(prefix) for prefix in BLOCKING_REVIEW_TAG_TYPES):
        return True
    # Custom HTML with a script is judged by its snippet only
    if tag_type == 'html' and tag.html:
        return any(pattern.search(tag.html) for pattern in BLOCKING_REVIEW_HTML_PATTERNS)
    name = tag.name.lower()
    return any(keyword in name or keyword in tag_type for keyword in BLOCKING_REVIEW_KEYWORDS)


def is_builtin_trigger_id(trigger_id: str) -> bool:
    return trigger_id in BUILTIN_TRIGGER_IDS


def builtin_trigger_family(trigger_id: str) -> Optional[str]:
    entry = BUILTIN_TRIGGER_IDS.get(trigger_id)
    return entry[1] if entry else None


def required_consents(tag: Tag) -> List[str]:
    """Consent categories a marketing tag needs before it may fire"""
    tag_type = tag.type_lower
    entry = _lookup_marketing_type(tag_type)
    if entry:
        return list(entry[0])

    if tag_type == 'html' and has_marketing_html(tag):
        html = tag.html
        if any(marker in html for marker in AD_HTML_MARKERS):
            return list(AD_CONSENTS)
        return list(ANALYTICS_CONSENTS)

    if 'ga4' in tag_type or 'gtag' in tag_type or 'gaawe' in tag_type or tag_type == 'googtag':
        return list(ANALYTICS_CONSENTS)
    return list(AD_CONSENTS)


def is_core_tag(tag: Tag) -> bool:
    """GA4 configuration, page_view events and consent/init/server tags"""
    tag_type = tag.type_lower
    if tag_type in CORE_TAG_TYPES:
        return True
    if tag_type in ('gaawe', 'ga4_event') and tag.param('eventName') == 'page_view':
        return True
    name = tag.name.lower()
    return any(keyword in tag_type or keyword in name for keyword in CORE_KEYWORDS)


def is_ux_tag(tag: Tag) -> bool:
    """Heatmap, session recording and video tags"""
    name = tag.name.lower()
    tag_type = tag.type_lower
    return any(keyword in name or keyword in tag_type for keyword in UX_KEYWORDS)


def is_ua_tag(tag: Tag) -> bool:
    """Universal Analytics by type, name or tracking id"""
    if tag.type_lower in UA_TAG_TYPES:
        return True
    candidates = [tag.name]
    tracking_id = tag.param('trackingId')
    if isinstance(tracking_id, str):
        candidates.append(tracking_id)
    return any(pattern.search(text) for text in candidates for pattern in UA_NAME_PATTERNS)


def is_builtin_variable_name(name: str, enabled_builtins=()) -> bool:
    return name in BUILTIN_VARIABLE_NAMES or name in enabled_builtins


def get_tag_type_name(tag_type: str) -> str:
    """Get human-readable name for tag type"""
    if tag_type.startswith('cvt_'):
        return 'Custom Template Tag'
    return TAG_TYPE_NAMES.get(tag_type, f'Unknown Tag ({tag_type})')


def get_variable_type_name(var_type: str) -> str:
    """Get human-readable name for variable type"""
    if var_type.startswith('cvt_'):
        return 'Custom Template Variable'
    return VARIABLE_TYPE_NAMES.get(var_type, f'Unknown ({var_type})')


def get_trigger_type_name(family: str) -> str:
    return TRIGGER_FAMILY_NAMES.get(family, family.title() if family else 'Unknown')
