from __future__ import annotations

from typing import Callable

IdentityStrategy = Callable[[str, str], tuple[str, str]]


def domain_from_email(email: str) -> str:
    """
    Return the text after the last unescaped '@' in `email`, or "".

    An '@' preceded by a backslash (as in a quoted local part like
    `"a\\@b"@example.org`) does not count as the separator. The domain is kept
    as-is: no attempt is made to collapse it to a registrable domain.
    """
    e = (email or "").strip()
    i = len(e) - 1
    while i >= 0:
        if e[i] == "@" and not (i > 0 and e[i - 1] == "\\"):
            return e[i + 1 :]
        i -= 1
    return ""


def normalize_identity(author_name: str, author_email: str) -> tuple[str, str]:
    # Authors are matched by exact name. Different spellings are different authors.
    return author_name, domain_from_email(author_email)
