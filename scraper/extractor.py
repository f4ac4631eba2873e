"""
Landing-page fact extraction: headline, CTAs, forms, testimonials, social
proof, trust signals and a few technical checks. The result feeds the 10M
conversion scoring.
"""

import re
import logging
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

MAX_CTAS = 10
MAX_TESTIMONIALS = 5
MAX_LOGOS = 10
MAX_CERTIFICATIONS = 5
MAX_HEADINGS = 10

_CTA_RE = re.compile(
    r"acquista|compra|iscriviti|registrati|download|scarica|contatta|richiedi|prova|inizia|"
    r"scopri|buy|purchase|sign up|register|contact|request|try|start|discover|get started",
    re.IGNORECASE,
)
_SECURITY_RE  = re.compile(r"ssl|secure|encryption|privacy|gdpr|security", re.IGNORECASE)
_GUARANTEE_RE = re.compile(r"garanzia|rimborso|soddisfatti|guarantee|refund|satisfaction", re.IGNORECASE)
_LOGO_SRC_RE  = re.compile(r"logo|client|partner", re.IGNORECASE)
_CERT_SRC_RE  = re.compile(r"cert|trust|badge|secure|ssl", re.IGNORECASE)
_TESTIMONIAL_CLASS_RE = re.compile(r"testimonial|review", re.IGNORECASE)


def _text(tag) -> str:
    return tag.get_text(separator=" ", strip=True) if tag else ""


def _cta_buttons(soup: BeautifulSoup, page_url: str) -> list[dict]:
    ctas = []
    for tag in soup.find_all(["button", "a", "input"]):
        if tag.name == "input":
            if (tag.get("type") or "").lower() not in ("button", "submit"):
                continue
            text = (tag.get("value") or "").strip()
        else:
            text = _text(tag)
        if not text or not _CTA_RE.search(text):
            continue
        href = urljoin(page_url, tag["href"]) if tag.name == "a" and tag.get("href") else None
        ctas.append({"text": text, "href": href, "element": tag.name})
        if len(ctas) >= MAX_CTAS:
            break
    return ctas


def _forms(soup: BeautifulSoup) -> list[dict]:
    forms = []
    for form in soup.find_all("form"):
        inputs = [
            i for i in form.find_all("input")
            if (i.get("type") or "text").lower() not in ("hidden", "submit", "button")
        ]
        fields = inputs + form.find_all("textarea") + form.find_all("select")
        forms.append({
            "fields":          len(fields),
            "required_fields": sum(1 for f in fields if f.has_attr("required")),
            "action":          form.get("action") or "",
        })
    return forms


def _testimonials(soup: BeautifulSoup) -> list[dict]:
    candidates = soup.find_all("blockquote") + soup.find_all(class_=_TESTIMONIAL_CLASS_RE)
    found, seen = [], set()
    for tag in candidates:
        text = _text(tag)
        if not 20 < len(text) < 500 or text in seen:
            continue
        seen.add(text)
        author = tag.find("cite")
        found.append({"text": text, "author": _text(author) or None})
        if len(found) >= MAX_TESTIMONIALS:
            break
    return found


def _social_proof(soup: BeautifulSoup) -> dict:
    logos, certifications = [], []
    for img in soup.find_all("img", src=True):
        src = img["src"]
        if _LOGO_SRC_RE.search(src):
            logos.append(src)
        if _CERT_SRC_RE.search(src):
            certifications.append(src)
    return {
        "client_logos":   logos[:MAX_LOGOS],
        "certifications": certifications[:MAX_CERTIFICATIONS],
    }


def _trust_elements(html: str) -> dict:
    lowered = html.lower()
    return {
        "security_badges": _SECURITY_RE.findall(html)[:3],
        "guarantees":      _GUARANTEE_RE.findall(html)[:3],
        "contact_info":    "contact" in lowered or "contatto" in lowered,
        "privacy_policy":  "privacy" in lowered or "cookie" in lowered,
    }


def extract_landing_facts(html: str, page_url: str) -> dict:
    """
    Parse raw HTML into the facts used for landing-page scoring.

    Returns:
        title, headline (first h1), subheadline (first h2), meta_description
        cta_buttons      (list)  [{"text", "href", "element"}, ...]
        forms            (list)  [{"fields", "required_fields", "action"}, ...]
        testimonials     (list)  [{"text", "author"}, ...]
        social_proof     (dict)  client_logos / certifications image URLs
        trust_elements   (dict)  security / guarantee phrases, contact / privacy flags
        technical_data   (dict)  viewport, SSL, meta tags, script / image counts
        content_sections (list)  first headings in document order
    """
    soup = BeautifulSoup(html or "", "lxml")

    title = _text(soup.find("title"))
    meta_desc = ""
    for tag in soup.find_all("meta"):
        if (tag.get("name") or "").lower() == "description":
            meta_desc = (tag.get("content") or "").strip()
            break

    viewport = soup.find("meta", attrs={"name": "viewport"})
    viewport_content = (viewport.get("content") or "") if viewport else ""

    headings = [
        {"type": "heading", "content": _text(h), "position": n}
        for n, h in enumerate(soup.find_all(re.compile(r"^h[1-6]$"))[:MAX_HEADINGS])
        if _text(h)
    ]

    facts = {
        "title":            title,
        "headline":         _text(soup.find("h1")),
        "subheadline":      _text(soup.find("h2")),
        "meta_description": meta_desc,
        "cta_buttons":      _cta_buttons(soup, page_url),
        "forms":            _forms(soup),
        "testimonials":     _testimonials(soup),
        "social_proof":     _social_proof(soup),
        "trust_elements":   _trust_elements(html or ""),
        "technical_data": {
            "mobile_responsive":   "device-width" in viewport_content,
            "has_ssl":             page_url.startswith("https://"),
            "meta_tags_optimized": len(title) > 10 and len(meta_desc) > 50,
            "script_count":        len(soup.find_all("script")),
            "image_count":         len(soup.find_all("img")),
        },
        "content_sections": headings,
    }

    logger.debug(
        "Extracted %s: %d CTAs, %d forms, %d testimonials",
        page_url, len(facts["cta_buttons"]), len(facts["forms"]), len(facts["testimonials"]),
    )
    return facts


def fetch_html(url: str, timeout: int = 20) -> str:
    """GET the page and return its HTML; raises requests.HTTPError on 4xx/5xx."""
    resp = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
    resp.raise_for_status()
    logger.info("Fetched %s (%d bytes)", url, len(resp.content))
    return resp.text
