from urllib.parse import urlparse, urlunparse

_SCHEMES = ("http://", "https://")


def looks_like_url(value: str) -> bool:
    candidate = (value or "").strip()
    if not candidate:
        return False
    return candidate.lower().startswith(_SCHEMES) or "." in candidate


def normalize_url(url: str) -> str:
    candidate = (url or "").strip()
    if not candidate:
        return ""
    if not candidate.lower().startswith(_SCHEMES):
        candidate = f"https://{candidate}"
    try:
        parsed = urlparse(candidate)
    except ValueError:
        return ""
    if not parsed.netloc or " " in parsed.netloc:
        return ""
    path = parsed.path or "/"
    return urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            path,
            "",
            parsed.query,
            parsed.fragment,
        )
    )


def merge_tags(*groups) -> list[str]:
    merged: list[str] = []
    seen: set[str] = set()
    for group in groups:
        for tag in group or ():
            clean = str(tag).strip()
            key = clean.lower()
            if not clean or key in seen:
                continue
            seen.add(key)
            merged.append(clean)
    return merged


def parse_tags(raw) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        tokens = raw.replace(",", " ").split()
    else:
        tokens = []
        for item in raw:
            if item is None:
                continue
            tokens.extend(str(item).replace(",", " ").split())
    return merge_tags(tokens)
