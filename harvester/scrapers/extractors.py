"""Per-platform extraction scripts, search URLs and interstitial detection.

Scripts run inside the page and return a plain object with ``title``,
``price``, ``description``, ``images`` and ``supplierName``. Missing values
come back as null/empty so the validator can see they are missing.
"""

from typing import Dict, Optional, Union
from urllib.parse import quote_plus

from harvester.core.exceptions import BlockedError, CaptchaDetectedError
from harvester.scrapers.base import Platform

SEARCH_URLS: Dict[Platform, str] = {
    Platform.ALIBABA: "https://www.alibaba.com/trade/search?SearchText={query}",
    Platform.ALIEXPRESS: "https://www.aliexpress.com/wholesale?SearchText={query}",
    Platform.AMAZON: "https://www.amazon.com/s?k={query}",
}


def search_url(platform: Union[Platform, str], query: str) -> str:
    """Build the platform's search page URL for ``query``."""
    return SEARCH_URLS[Platform(platform)].format(query=quote_plus(query.strip()))


# Lower-cased page text fragments
CAPTCHA_MARKERS = [
    "enter the characters you see below",
    "type the characters you see",
    "sorry, we just need to make sure you're not a robot",
    "slide to verify",
    "verify you are human",
    "captcha",
]

BLOCK_MARKERS = [
    "to discuss automated access to amazon data",
    "api-services-support@amazon.com",
    "unusual traffic",
    "access denied",
    "request blocked",
    "pardon our interruption",
    "security verification",
    "punish",
]

PAGE_SNAPSHOT_SCRIPT = """
() => ({
    title: document.title || '',
    location: window.location.href,
    text: ((document.body && document.body.innerText) || '').slice(0, 5000),
})
"""


def check_for_interstitial(snapshot: Dict[str, str], url: str) -> None:
    """Raise if the page is a CAPTCHA or anti-bot page instead of content.

    Args:
        snapshot: Result of PAGE_SNAPSHOT_SCRIPT
        url: URL that was requested

    Raises:
        CaptchaDetectedError: If a CAPTCHA marker is present
        BlockedError: If a block marker is present
    """
    haystack = " ".join(
        str(snapshot.get(key) or "") for key in ("title", "location", "text")
    ).lower()
    captcha = next((m for m in CAPTCHA_MARKERS if m in haystack), None)
    if captcha:
        raise CaptchaDetectedError(url, captcha)
    blocked = next((m for m in BLOCK_MARKERS if m in haystack), None)
    if blocked:
        raise BlockedError(url, blocked)


_HELPERS = """
    const text = (...selectors) => {
        for (const s of selectors) {
            const el = document.querySelector(s);
            const value = el && el.textContent && el.textContent.trim();
            if (value) return value;
        }
        return null;
    };
    const srcs = (selector, attr) => Array.from(document.querySelectorAll(selector))
        .map(img => attr ? img.getAttribute(attr) : img.src)
        .filter(src => src && !src.startsWith('data:'));
    const unique = list => Array.from(new Set(list));
"""

_DOM_SCRIPTS: Dict[Platform, str] = {
    Platform.ALIBABA: """
() => {%s
    return {
        title: text('.product-title', '[class*="product-title"]', 'h1'),
        price: text('.price', '[class*="price"]'),
        description: text('.product-description', '[class*="description"]'),
        images: unique(srcs('img[src*="product"], [class*="main-image"] img')),
        supplierName: text('.supplier-name', '[class*="company-name"]', '[class*="supplier"]'),
    };
}
""" % _HELPERS,
    Platform.ALIEXPRESS: """
() => {%s
    return {
        title: text('h1[data-pl="product-title"]', '.product-title', 'h1'),
        price: text('[class*="price--current"]', '.product-price-value', '[class*="price"]'),
        description: text('#product-description', '.product-description', '[class*="description"]'),
        images: unique(srcs('[class*="slider--img"] img, img[src*="product"]')),
        supplierName: text('[class*="store-name"]', '.shop-name', '[class*="supplier"]'),
    };
}
""" % _HELPERS,
    Platform.AMAZON: """
() => {%s
    let images = srcs('img[data-old-hires]', 'data-old-hires');
    if (!images.length) images = srcs('#altImages img, img[src*="images"]');
    return {
        title: text('#productTitle', 'h1'),
        price: text('.a-price .a-offscreen', '.a-price-whole', '[class*="price"]'),
        description: text('#productDescription', '#feature-bullets', '[class*="description"]'),
        images: unique(images),
        supplierName: text('#sellerProfileTriggerId', '#bylineInfo') || 'Amazon',
    };
}
""" % _HELPERS,
}

# Reads the structured data the page ships for its own client code instead of
# the rendered DOM: schema.org Product JSON-LD, then the marketplace's inline
# state object.
_EMBEDDED_STATE_SCRIPT = """
() => {
    const product = (() => {
        for (const node of document.querySelectorAll('script[type="application/ld+json"]')) {
            try {
                const data = JSON.parse(node.textContent);
                const items = Array.isArray(data) ? data : (data['@graph'] || [data]);
                const found = items.find(i => i && i['@type'] === 'Product');
                if (found) return found;
            } catch (e) { /* malformed block */ }
        }
        return null;
    })();
    if (product) {
        const offers = Array.isArray(product.offers) ? product.offers[0] : (product.offers || {});
        const images = Array.isArray(product.image) ? product.image : (product.image ? [product.image] : []);
        return {
            title: product.name || null,
            price: offers.price != null ? String(offers.price) : (offers.lowPrice != null ? String(offers.lowPrice) : null),
            description: product.description || null,
            images: images.map(i => (typeof i === 'string' ? i : i && i.url)).filter(Boolean),
            supplierName: (product.brand && (product.brand.name || product.brand)) || (offers.seller && offers.seller.name) || null,
        };
    }
    const state = (window.runParams && window.runParams.data) || window.__INIT_DATA__ || null;
    if (!state) return { title: null, price: null, description: null, images: [], supplierName: null };
    const pick = (...paths) => {
        for (const path of paths) {
            const value = path.split('.').reduce((acc, key) => (acc == null ? acc : acc[key]), state);
            if (value != null && value !== '') return value;
        }
        return null;
    };
    const images = pick('imageModule.imagePathList', 'productImage.mediaItems') || [];
    return {
        title: pick('titleModule.subject', 'productTitle.subject', 'product.subject'),
        price: pick('priceModule.formatedActivityPrice', 'priceModule.formatedPrice', 'price.formatPrice'),
        description: pick('pageModule.description', 'productDescription.text'),
        images: images.map(i => (typeof i === 'string' ? i : i && (i.imageUrl || i.url))).filter(Boolean),
        supplierName: pick('storeModule.storeName', 'companyInfo.companyName', 'supplier.name'),
    };
}
"""

_SEARCH_SCRIPTS: Dict[Platform, str] = {
    Platform.ALIBABA: """
() => {
    const card = document.querySelector('[class*="search-card"], [class*="organic-list"] > div');
    if (!card) return { title: null, price: null, description: null, images: [], supplierName: null };
    const q = s => { const el = card.querySelector(s); return el && el.textContent ? el.textContent.trim() : null; };
    const link = card.querySelector('a[href*="product-detail"], a[href]');
    return {
        title: q('h2, [class*="title"]'),
        price: q('[class*="price"]'),
        description: q('[class*="desc"], [class*="attr"]'),
        images: Array.from(card.querySelectorAll('img')).map(i => i.src).filter(s => s && !s.startsWith('data:')),
        supplierName: q('[class*="company"], [class*="supplier"]'),
        listingUrl: link ? link.href : null,
    };
}
""",
    Platform.ALIEXPRESS: """
() => {
    const card = document.querySelector('a[href*="/item/"]');
    if (!card) return { title: null, price: null, description: null, images: [], supplierName: null };
    const q = s => { const el = card.querySelector(s); return el && el.textContent ? el.textContent.trim() : null; };
    return {
        title: q('h3, [class*="title"]'),
        price: q('[class*="price"]'),
        description: card.getAttribute('title') || q('h3, [class*="title"]'),
        images: Array.from(card.querySelectorAll('img')).map(i => i.src).filter(s => s && !s.startsWith('data:')),
        supplierName: q('[class*="store"]'),
        listingUrl: card.href,
    };
}
""",
    Platform.AMAZON: """
() => {
    const card = document.querySelector('[data-component-type="s-search-result"]');
    if (!card) return { title: null, price: null, description: null, images: [], supplierName: null };
    const q = s => { const el = card.querySelector(s); return el && el.textContent ? el.textContent.trim() : null; };
    const link = card.querySelector('h2 a, a.a-link-normal');
    return {
        title: q('h2'),
        price: q('.a-price .a-offscreen'),
        description: q('h2'),
        images: Array.from(card.querySelectorAll('img.s-image')).map(i => i.src).filter(Boolean),
        supplierName: 'Amazon',
        listingUrl: link ? link.href : null,
    };
}
""",
}


def extraction_script(platform: Union[Platform, str], mode: Optional[str] = None, search: bool = False) -> str:
    """Pick the extraction script for a platform.

    Args:
        platform: Target marketplace
        mode: "dom" (default) or "embedded_state"
        search: True when the page is a search results page

    Returns:
        JavaScript function source for ``Page.run_query``
    """
    platform = Platform(platform)
    if mode == "embedded_state":
        return _EMBEDDED_STATE_SCRIPT
    if search:
        return _SEARCH_SCRIPTS[platform]
    return _DOM_SCRIPTS[platform]
