"""Curated fix guidance for the rules users hit most often."""
from typing import Dict, NamedTuple


class RuleGuidance(NamedTuple):
    how_to_fix: str
    code_example: str


RULE_GUIDANCE: Dict[str, RuleGuidance] = {
    "color-contrast": RuleGuidance(
        "Ensure the contrast ratio between foreground text and background colors meets the "
        "minimum 4.5:1 ratio for normal text and 3:1 for large text.",
        '<!-- Before -->\n<p style="color: #999; background: #fff;">Low contrast</p>\n\n'
        '<!-- After -->\n<p style="color: #595959; background: #fff;">Accessible contrast</p>',
    ),
    "image-alt": RuleGuidance(
        "Add descriptive alt text to all informative images. For decorative images, use an "
        'empty alt attribute (alt="").',
        '<!-- Before -->\n<img src="photo.jpg" />\n\n'
        '<!-- After -->\n<img src="photo.jpg" alt="Description of the image content" />',
    ),
    "label": RuleGuidance(
        "Ensure every form input has an associated <label> element or an aria-label / "
        "aria-labelledby attribute.",
        '<!-- Before -->\n<input type="email" placeholder="Email" />\n\n'
        '<!-- After -->\n<label for="email">Email</label>\n<input type="email" id="email" />',
    ),
    "link-name": RuleGuidance(
        "Ensure all links have discernible text. If a link contains only an icon, add an aria-label.",
        '<!-- Before -->\n<a href="/page"><svg>...</svg></a>\n\n'
        '<!-- After -->\n<a href="/page" aria-label="Go to page"><svg>...</svg></a>',
    ),
    "aria-required-attr": RuleGuidance(
        "Ensure all ARIA roles have their required attributes. For example, role=\"checkbox\" "
        "requires aria-checked.",
        '<!-- Before -->\n<div role="checkbox">Option</div>\n\n'
        '<!-- After -->\n<div role="checkbox" aria-checked="false" tabindex="0">Option</div>',
    ),
    "aria-roles": RuleGuidance(
        "Ensure all role attribute values are valid ARIA roles. Remove or correct invalid role values.",
        '<!-- Before -->\n<div role="invalid">Content</div>\n\n'
        '<!-- After -->\n<div role="region" aria-label="Content section">Content</div>',
    ),
    "aria-valid-attr": RuleGuidance(
        "Ensure all aria-* attributes are valid and correctly spelled.",
        '<!-- Before -->\n<div aria-labelled="title">...</div>\n\n'
        '<!-- After -->\n<div aria-labelledby="title">...</div>',
    ),
    "heading-order": RuleGuidance(
        "Ensure heading levels increase by one and do not skip levels (e.g. h1 followed by h2, not h3).",
        "<!-- Before -->\n<h1>Title</h1>\n<h3>Subsection</h3>\n\n"
        "<!-- After -->\n<h1>Title</h1>\n<h2>Subsection</h2>",
    ),
    "html-has-lang": RuleGuidance(
        "Add a lang attribute to the <html> element to declare the page language.",
        '<!-- Before -->\n<html>\n\n<!-- After -->\n<html lang="en">',
    ),
    "document-title": RuleGuidance(
        "Ensure the page has a <title> element inside <head> that describes the page content.",
        "<!-- Before -->\n<head></head>\n\n<!-- After -->\n<head><title>Page Title</title></head>",
    ),
    "meta-viewport": RuleGuidance(
        "Ensure the meta viewport element does not disable user scaling (maximum-scale should "
        "be >= 2 or not set).",
        '<!-- Before -->\n<meta name="viewport" content="width=device-width, maximum-scale=1">\n\n'
        '<!-- After -->\n<meta name="viewport" content="width=device-width, initial-scale=1">',
    ),
    "button-name": RuleGuidance(
        "Ensure all buttons have discernible text. Add visible text or an aria-label.",
        "<!-- Before -->\n<button><svg>...</svg></button>\n\n"
        '<!-- After -->\n<button aria-label="Close menu"><svg>...</svg></button>',
    ),
}

DEFAULT_GUIDANCE = RuleGuidance(
    "Review this rule in WCAG guidance and ensure elements meet the requirement.",
    "",
)


def guidance_for(rule_id: str) -> RuleGuidance:
    return RULE_GUIDANCE.get(rule_id, DEFAULT_GUIDANCE)
