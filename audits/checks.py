"""Check catalogue and the engine that evaluates it against one page."""
from __future__ import annotations

import enum
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, NavigableString

from shared.models import CheckStatus, Severity

from .context import AuditContext
from .errors import CheckEvaluationError
from .result import CheckResult


TITLE_MIN = 30
TITLE_MAX = 60
DESCRIPTION_MIN = 120
DESCRIPTION_MAX = 160
THIN_CONTENT_WORDS = 100
SHORT_CONTENT_WORDS = 300
SLOW_RESPONSE_MS = 1500
VERY_SLOW_RESPONSE_MS = 3000
SESSION_PARAM_PATTERN = re.compile(r"[?&](sid|session|phpsessid|jsessionid)", re.IGNORECASE)


class Category(str, enum.Enum):
    INDEXABILITY = "indexability"
    METADATA = "metadata"
    CONTENT = "content"
    SCHEMA = "schema"
    VARIANT_RISK = "variantRisk"
    AI_READINESS = "aiReadiness"


class Finding(NamedTuple):
    """What an evaluator decided; the definition supplies id, category and severity."""

    status: CheckStatus
    message: str
    evidence: Optional[Dict[str, Any]] = None
    fix_hint: Optional[str] = None


Evaluator = Callable[[AuditContext], Finding]


@dataclass(frozen=True)
class CheckDefinition:
    id: str
    category: Category
    name: str
    severity: Severity
    weight: int
    evaluator: Evaluator

    def evaluate(self, context: AuditContext) -> CheckResult:
        finding = self.evaluator(context)
        return CheckResult(
            check_id=self.id,
            category=self.category.value,
            status=finding.status,
            severity=self.severity,
            message=finding.message,
            evidence=finding.evidence,
            fix_hint=finding.fix_hint,
        )

    def skipped(self, error: CheckEvaluationError) -> CheckResult:
        return CheckResult(
            check_id=self.id,
            category=self.category.value,
            status=CheckStatus.SKIP,
            severity=self.severity,
            message=f"Check failed: {error}",
        )


def round_half_up(value: float) -> int:
    """Round like a browser's ``Math.round`` (halves go towards +infinity)."""

    return int(math.floor(value + 0.5))


# ----------------------------------------------------------------------
# Document helpers
# ----------------------------------------------------------------------
def _attr(document: BeautifulSoup, selector: str, name: str) -> Optional[str]:
    tag = document.select_one(selector)
    if tag is None:
        return None
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return value


def _title(document: BeautifulSoup) -> str:
    return "".join(tag.get_text() for tag in document.find_all("title")).strip()


def _description(document: BeautifulSoup) -> Optional[str]:
    content = _attr(document, 'meta[name="description"]', "content")
    return content.strip() if content is not None else None


def _canonical(document: BeautifulSoup) -> Optional[str]:
    return _attr(document, 'link[rel="canonical"]', "href")


def _json_ld_items(document: BeautifulSoup) -> List[Any]:
    """Return every top-level JSON-LD item; unparseable blocks are ignored."""

    items: List[Any] = []
    for script in document.select('script[type="application/ld+json"]'):
        try:
            payload = json.loads(script.get_text() or "")
        except ValueError:
            continue
        items.extend(payload if isinstance(payload, list) else [payload])
    return items


def _products(items: Iterable[Any]) -> List[Dict[str, Any]]:
    return [item for item in items if isinstance(item, dict) and item.get("@type") == "Product"]


def _offers(product: Dict[str, Any]) -> List[Dict[str, Any]]:
    offers = product.get("offers")
    if not offers:
        return []
    candidates = offers if isinstance(offers, list) else [offers]
    return [offer for offer in candidates if isinstance(offer, dict)]


def _get(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, dict) else None


def _strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


# ----------------------------------------------------------------------
# Indexability
# ----------------------------------------------------------------------
def _http_status_ok(ctx: AuditContext) -> Finding:
    ok = ctx.http_status == 200
    return Finding(
        CheckStatus.PASS if ok else CheckStatus.FAIL,
        "Page returns HTTP 200" if ok else f"Page returns HTTP {ctx.http_status}",
        {"httpStatus": ctx.http_status},
        None if ok else "Ensure the page returns a 200 status code",
    )


def _no_noindex(ctx: AuditContext) -> Finding:
    robots_meta = _attr(ctx.document, 'meta[name="robots"]', "content") or ""
    noindex = "noindex" in robots_meta.lower()
    return Finding(
        CheckStatus.FAIL if noindex else CheckStatus.PASS,
        "Page has noindex directive" if noindex else "Page is indexable",
        {"robotsMeta": robots_meta},
        "Remove noindex from meta robots tag" if noindex else None,
    )


def _canonical_present(ctx: AuditContext) -> Finding:
    canonical = _canonical(ctx.document)
    return Finding(
        CheckStatus.PASS if canonical else CheckStatus.FAIL,
        "Canonical tag present" if canonical else "No canonical tag found",
        {"canonical": canonical},
        None if canonical else "Add a canonical tag pointing to the preferred URL",
    )


def _canonical_self(ctx: AuditContext) -> Finding:
    canonical = _canonical(ctx.document)
    if not canonical:
        return Finding(CheckStatus.SKIP, "No canonical tag to evaluate")
    resolved = _strip_trailing_slash(urljoin(ctx.url, canonical))
    is_self = resolved == _strip_trailing_slash(ctx.url)
    return Finding(
        CheckStatus.PASS if is_self else CheckStatus.WARN,
        "Canonical points to self" if is_self else "Canonical points to different URL",
        {"canonical": canonical, "pageUrl": ctx.url},
        None if is_self else "Consider if this page should have a self-referencing canonical",
    )


def _response_time(ctx: AuditContext) -> Finding:
    elapsed = ctx.response_time
    if elapsed > VERY_SLOW_RESPONSE_MS:
        status, message = CheckStatus.FAIL, f"Response time: {elapsed}ms (very slow)"
    elif elapsed > SLOW_RESPONSE_MS:
        status, message = CheckStatus.WARN, f"Response time: {elapsed}ms (slow)"
    else:
        status, message = CheckStatus.PASS, f"Response time: {elapsed}ms (fast)"
    return Finding(
        status,
        message,
        {"responseTime": elapsed},
        "Improve server response time" if status is not CheckStatus.PASS else None,
    )


# ----------------------------------------------------------------------
# Metadata
# ----------------------------------------------------------------------
def _title_present(ctx: AuditContext) -> Finding:
    title = _title(ctx.document)
    return Finding(
        CheckStatus.PASS if title else CheckStatus.FAIL,
        "Title tag present" if title else "No title tag found",
        {"title": title},
        None if title else "Add a descriptive title tag",
    )


def _title_length(ctx: AuditContext) -> Finding:
    title = _title(ctx.document)
    length = len(title)
    if length == 0:
        status, message = CheckStatus.FAIL, "No title tag"
    elif length < TITLE_MIN:
        status = CheckStatus.WARN
        message = f"Title too short ({length} chars, recommend {TITLE_MIN}-{TITLE_MAX})"
    elif length > TITLE_MAX:
        status = CheckStatus.WARN
        message = f"Title may be truncated ({length} chars, recommend {TITLE_MIN}-{TITLE_MAX})"
    else:
        status, message = CheckStatus.PASS, f"Title length is {length} characters (optimal)"
    return Finding(
        status,
        message,
        {"title": title, "length": length},
        f"Keep title between {TITLE_MIN}-{TITLE_MAX} characters"
        if status is not CheckStatus.PASS
        else None,
    )


def _meta_desc_present(ctx: AuditContext) -> Finding:
    description = _description(ctx.document)
    return Finding(
        CheckStatus.PASS if description else CheckStatus.FAIL,
        "Meta description present" if description else "No meta description found",
        {"description": description[:200] if description is not None else None},
        None if description else "Add a compelling meta description",
    )


def _meta_desc_length(ctx: AuditContext) -> Finding:
    length = len(_description(ctx.document) or "")
    if length == 0:
        status, message = CheckStatus.SKIP, "No meta description to evaluate"
    elif length < DESCRIPTION_MIN:
        status = CheckStatus.WARN
        message = (
            f"Meta description short ({length} chars, recommend "
            f"{DESCRIPTION_MIN}-{DESCRIPTION_MAX})"
        )
    elif length > DESCRIPTION_MAX:
        status, message = CheckStatus.WARN, f"Meta description may be truncated ({length} chars)"
    else:
        status = CheckStatus.PASS
        message = f"Meta description length is {length} characters (optimal)"
    return Finding(
        status,
        message,
        {"length": length},
        f"Keep meta description between {DESCRIPTION_MIN}-{DESCRIPTION_MAX} characters"
        if status is CheckStatus.WARN
        else None,
    )


# ----------------------------------------------------------------------
# Content
# ----------------------------------------------------------------------
def _h1_present(ctx: AuditContext) -> Finding:
    headings = ctx.document.find_all("h1")
    first = headings[0].get_text().strip() if headings else ""
    return Finding(
        CheckStatus.PASS if headings else CheckStatus.FAIL,
        "H1 tag present" if headings else "No H1 tag found",
        {"h1": first, "count": len(headings)},
        None if headings else "Add a descriptive H1 tag for the product",
    )


def _h1_single(ctx: AuditContext) -> Finding:
    count = len(ctx.document.find_all("h1"))
    if count == 1:
        status, message = CheckStatus.PASS, "Single H1 tag (good)"
    elif count == 0:
        status, message = CheckStatus.SKIP, "No H1 tag"
    else:
        status, message = CheckStatus.WARN, f"Multiple H1 tags found ({count})"
    return Finding(
        status,
        message,
        {"count": count},
        "Consider using only one H1 tag per page" if count > 1 else None,
    )


def _images_present(ctx: AuditContext) -> Finding:
    count = len(ctx.document.find_all("img"))
    return Finding(
        CheckStatus.PASS if count else CheckStatus.FAIL,
        f"{count} images found" if count else "No images found",
        {"imageCount": count},
        None if count else "Add product images",
    )


def _images_have_alt(ctx: AuditContext) -> Finding:
    images = ctx.document.find_all("img")
    total = len(images)
    with_alt = sum(1 for image in images if image.get("alt"))
    percentage = round_half_up(with_alt / total * 100) if total else 0

    if total == 0:
        status = CheckStatus.SKIP
    elif percentage < 50:
        status = CheckStatus.FAIL
    elif percentage < 100:
        status = CheckStatus.WARN
    else:
        status = CheckStatus.PASS

    return Finding(
        status,
        "No images to evaluate"
        if total == 0
        else f"{with_alt}/{total} images have alt text ({percentage}%)",
        {"total": total, "withAlt": with_alt, "percentage": percentage},
        "Add descriptive alt text to all product images"
        if status in (CheckStatus.FAIL, CheckStatus.WARN)
        else None,
    )


def _content_words(document: BeautifulSoup) -> int:
    """Words of visible body text. Script, style and template text is not counted."""

    if document.body is not None:
        return len(document.body.get_text(" ").split())
    # fragment without <body>: skip whatever belongs to the head
    strings = (
        text
        for text in document.find_all(string=True)
        if type(text) is NavigableString
        and not any(parent.name in ("head", "title") for parent in text.parents)
    )
    return len(" ".join(strings).split())


def _content_length(ctx: AuditContext) -> Finding:
    words = _content_words(ctx.document)
    if words < THIN_CONTENT_WORDS:
        status, message = CheckStatus.FAIL, f"Very thin content ({words} words)"
    elif words < SHORT_CONTENT_WORDS:
        status, message = CheckStatus.WARN, f"Content may be thin ({words} words)"
    else:
        status, message = CheckStatus.PASS, f"Content has {words} words"
    return Finding(
        status,
        message,
        {"wordCount": words},
        "Add more descriptive content about the product"
        if status is not CheckStatus.PASS
        else None,
    )


# ----------------------------------------------------------------------
# Schema
# ----------------------------------------------------------------------
def _schema_product(ctx: AuditContext) -> Finding:
    product = None
    for item in _json_ld_items(ctx.document):
        if not isinstance(item, dict):
            continue
        kind = item.get("@type")
        if kind == "Product" or (isinstance(kind, (str, list)) and "Product" in kind):
            product = item
    found = product is not None
    return Finding(
        CheckStatus.PASS if found else CheckStatus.FAIL,
        "Product schema found" if found else "No Product schema found",
        {"name": product.get("name"), "brand": _get(product.get("brand"), "name")}
        if found
        else None,
        None if found else "Add Product structured data (JSON-LD)",
    )


def _schema_offer(ctx: AuditContext) -> Finding:
    offer = None
    for product in _products(_json_ld_items(ctx.document)):
        if product.get("offers"):
            offer = product["offers"]
    found = offer is not None
    return Finding(
        CheckStatus.PASS if found else CheckStatus.FAIL,
        "Offer schema found" if found else "No Offer schema in Product",
        {"price": _get(offer, "price"), "currency": _get(offer, "priceCurrency")}
        if found
        else None,
        None if found else "Add Offer data to Product schema with price and availability",
    )


def _schema_offer_price(ctx: AuditContext) -> Finding:
    price = None
    for product in _products(_json_ld_items(ctx.document)):
        for offer in _offers(product):
            if offer.get("price") or offer.get("lowPrice"):
                price = offer.get("price") or offer.get("lowPrice")
    found = price is not None
    return Finding(
        CheckStatus.PASS if found else CheckStatus.FAIL,
        f"Price found: {price}" if found else "No price in Offer schema",
        {"price": price},
        None if found else "Add price to Offer schema",
    )


def _schema_offer_availability(ctx: AuditContext) -> Finding:
    availability = None
    for product in _products(_json_ld_items(ctx.document)):
        for offer in _offers(product):
            if offer.get("availability"):
                availability = offer["availability"]
    found = availability is not None
    return Finding(
        CheckStatus.PASS if found else CheckStatus.WARN,
        "Availability status found" if found else "No availability in Offer schema",
        {"availability": availability},
        None if found else "Add availability to Offer schema (e.g., InStock, OutOfStock)",
    )


def _schema_reviews(ctx: AuditContext) -> Finding:
    found = False
    rating = None
    for product in _products(_json_ld_items(ctx.document)):
        if product.get("aggregateRating") or product.get("review"):
            found = True
            rating = product.get("aggregateRating")
    return Finding(
        CheckStatus.PASS if found else CheckStatus.SKIP,
        "Review/rating schema found" if found else "No review schema (optional but recommended)",
        {"ratingValue": _get(rating, "ratingValue"), "reviewCount": _get(rating, "reviewCount")}
        if found
        else None,
        None if found else "Consider adding AggregateRating and Review schema",
    )


# ----------------------------------------------------------------------
# Variant risk
# ----------------------------------------------------------------------
def _url_clean(ctx: AuditContext) -> Finding:
    query = urlsplit(ctx.url).query
    has_params = bool(query)
    has_session_id = has_params and bool(SESSION_PARAM_PATTERN.search(f"?{query}"))
    if has_session_id:
        status, message = CheckStatus.FAIL, "URL contains session parameters"
    elif has_params:
        status, message = CheckStatus.WARN, "URL contains query parameters"
    else:
        status, message = CheckStatus.PASS, "URL is clean"
    return Finding(
        status,
        message,
        {"url": ctx.url, "hasParams": has_params, "hasSessionId": has_session_id},
        "Use clean URLs without tracking or session parameters"
        if status is not CheckStatus.PASS
        else None,
    )


# ----------------------------------------------------------------------
# AI readiness
# ----------------------------------------------------------------------
def _structured_specs(ctx: AuditContext) -> Finding:
    document = ctx.document
    has_tables = document.find("table") is not None
    has_definition_lists = document.find("dl") is not None
    has_specs_section = bool(
        document.select('[class*="spec"], [class*="detail"], [class*="attribute"]')
    )
    structured = has_tables or has_definition_lists or has_specs_section
    return Finding(
        CheckStatus.PASS if structured else CheckStatus.WARN,
        "Structured specifications found"
        if structured
        else "No structured specifications detected",
        {
            "hasTables": has_tables,
            "hasDefinitionLists": has_definition_lists,
            "hasSpecsSection": has_specs_section,
        },
        None
        if structured
        else "Add structured product specifications (table or definition list)",
    )


def _faq_present(ctx: AuditContext) -> Finding:
    document = ctx.document
    ld_text = "".join(
        script.get_text() for script in document.select('script[type="application/ld+json"]')
    )
    has_faq_schema = "FAQPage" in ld_text
    has_faq_section = bool(
        document.select('[class*="faq"], [id*="faq"], [class*="question"]')
    )
    has_faq = has_faq_schema or has_faq_section
    return Finding(
        CheckStatus.PASS if has_faq else CheckStatus.SKIP,
        "FAQ section detected" if has_faq else "No FAQ section found (optional but good for AI)",
        {"hasFaqSchema": has_faq_schema, "hasFaqSection": has_faq_section},
        None if has_faq else "Consider adding a FAQ section for common product questions",
    )


CATALOGUE: Tuple[CheckDefinition, ...] = (
    CheckDefinition("http_status_ok", Category.INDEXABILITY, "HTTP Status OK", Severity.CRITICAL, 10, _http_status_ok),
    CheckDefinition("no_noindex", Category.INDEXABILITY, "No Noindex Tag", Severity.CRITICAL, 10, _no_noindex),
    CheckDefinition("canonical_present", Category.INDEXABILITY, "Canonical Tag Present", Severity.HIGH, 8, _canonical_present),
    CheckDefinition("canonical_self", Category.INDEXABILITY, "Canonical Points to Self", Severity.MEDIUM, 5, _canonical_self),
    CheckDefinition("title_present", Category.METADATA, "Title Tag Present", Severity.CRITICAL, 10, _title_present),
    CheckDefinition("title_length", Category.METADATA, "Title Length Optimal", Severity.MEDIUM, 5, _title_length),
    CheckDefinition("meta_desc_present", Category.METADATA, "Meta Description Present", Severity.HIGH, 8, _meta_desc_present),
    CheckDefinition("meta_desc_length", Category.METADATA, "Meta Description Length Optimal", Severity.LOW, 3, _meta_desc_length),
    CheckDefinition("h1_present", Category.CONTENT, "H1 Tag Present", Severity.HIGH, 8, _h1_present),
    CheckDefinition("h1_single", Category.CONTENT, "Single H1 Tag", Severity.LOW, 3, _h1_single),
    CheckDefinition("images_present", Category.CONTENT, "Product Images Present", Severity.HIGH, 8, _images_present),
    CheckDefinition("images_have_alt", Category.CONTENT, "Images Have Alt Text", Severity.MEDIUM, 5, _images_have_alt),
    CheckDefinition("content_length", Category.CONTENT, "Sufficient Content Length", Severity.MEDIUM, 5, _content_length),
    CheckDefinition("schema_product", Category.SCHEMA, "Product Schema Present", Severity.HIGH, 10, _schema_product),
    CheckDefinition("schema_offer", Category.SCHEMA, "Offer Schema Present", Severity.HIGH, 8, _schema_offer),
    CheckDefinition("schema_offer_price", Category.SCHEMA, "Offer Has Price", Severity.HIGH, 8, _schema_offer_price),
    CheckDefinition("schema_offer_availability", Category.SCHEMA, "Offer Has Availability", Severity.MEDIUM, 5, _schema_offer_availability),
    CheckDefinition("schema_reviews", Category.SCHEMA, "Review/Rating Schema", Severity.MEDIUM, 5, _schema_reviews),
    CheckDefinition("url_clean", Category.VARIANT_RISK, "Clean URL Structure", Severity.LOW, 3, _url_clean),
    CheckDefinition("structured_specs", Category.AI_READINESS, "Structured Product Specs", Severity.LOW, 3, _structured_specs),
    CheckDefinition("faq_present", Category.AI_READINESS, "FAQ Section Present", Severity.LOW, 3, _faq_present),
    CheckDefinition("response_time", Category.INDEXABILITY, "Fast Response Time", Severity.MEDIUM, 5, _response_time),
)


class CheckEngine:
    """Runs an ordered catalogue against one page, one result per definition."""

    def __init__(self, definitions: Sequence[CheckDefinition] = CATALOGUE) -> None:
        seen = set()
        for definition in definitions:
            if definition.id in seen:
                raise ValueError(f"Duplicate check id '{definition.id}'")
            if definition.weight <= 0:
                raise ValueError(f"Check '{definition.id}' must have a positive weight")
            seen.add(definition.id)
        self.definitions: Tuple[CheckDefinition, ...] = tuple(definitions)

    def run_all_checks(self, context: AuditContext) -> List[CheckResult]:
        results: List[CheckResult] = []
        for definition in self.definitions:
            try:
                results.append(definition.evaluate(context))
            except Exception as exc:
                results.append(definition.skipped(CheckEvaluationError(definition.id, exc)))
        return results
