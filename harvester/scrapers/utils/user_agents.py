"""Browser identity strings handed to sessions and pages."""

import random
from typing import List, Optional, Sequence


# Desktop Chromium identities; the stealth headers advertise Chromium client
# hints, so Firefox and Safari strings would contradict them.
DESKTOP_IDENTITIES: List[str] = [
    # Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
    # macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    # Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
]


def get_random_identity(pool: Optional[Sequence[str]] = None, rng: Optional[random.Random] = None) -> str:
    """Pick an identity string.

    Args:
        pool: Candidate strings (defaults to DESKTOP_IDENTITIES)
        rng: Random source, the module-level one when omitted

    Returns:
        Random identity string

    Raises:
        IndexError: If the pool is empty
    """
    candidates = DESKTOP_IDENTITIES if pool is None else pool
    return (rng or random).choice(list(candidates))


def get_identity_by_os(os_name: str) -> str:
    """Get a desktop identity for one operating system.

    Args:
        os_name: 'windows', 'mac' or 'linux'

    Returns:
        Matching identity string, or a random one if not recognized
    """
    marker = {"windows": "Windows NT", "mac": "Macintosh", "linux": "X11"}.get(os_name.lower())
    if marker is None:
        return get_random_identity()
    return get_random_identity([ua for ua in DESKTOP_IDENTITIES if marker in ua])
