from __future__ import annotations

import re
import unicodedata
from enum import Enum


class CanonicalSubject(str, Enum):
    MATHEMATICS = "Matemáticas"
    LANGUAGE = "Lenguaje"
    SOCIAL_STUDIES = "Ciencias Sociales"
    BIOLOGY = "Biologia"
    CHEMISTRY = "Quimica"
    PHYSICS = "Física"
    ENGLISH = "Inglés"

    def __str__(self) -> str:
        return self.value


NATURAL_SCIENCES: frozenset[CanonicalSubject] = frozenset(
    {CanonicalSubject.BIOLOGY, CanonicalSubject.CHEMISTRY, CanonicalSubject.PHYSICS}
)
REQUIRED_SUBJECTS: tuple[CanonicalSubject, ...] = tuple(CanonicalSubject)

_SPACE_RE = re.compile(r"\s+")

# Keys are lookup keys: lower case, no diacritics, single spaces.
_SUBJECT_ALIASES: dict[str, CanonicalSubject] = {
    "matematicas": CanonicalSubject.MATHEMATICS,
    "matematica": CanonicalSubject.MATHEMATICS,
    "mathematics": CanonicalSubject.MATHEMATICS,
    "math": CanonicalSubject.MATHEMATICS,
    "lenguaje": CanonicalSubject.LANGUAGE,
    "lectura critica": CanonicalSubject.LANGUAGE,
    "language": CanonicalSubject.LANGUAGE,
    "ciencias sociales": CanonicalSubject.SOCIAL_STUDIES,
    "sociales": CanonicalSubject.SOCIAL_STUDIES,
    "sociales y ciudadanas": CanonicalSubject.SOCIAL_STUDIES,
    "social studies": CanonicalSubject.SOCIAL_STUDIES,
    "biologia": CanonicalSubject.BIOLOGY,
    "biology": CanonicalSubject.BIOLOGY,
    "quimica": CanonicalSubject.CHEMISTRY,
    "chemistry": CanonicalSubject.CHEMISTRY,
    "fisica": CanonicalSubject.PHYSICS,
    "physics": CanonicalSubject.PHYSICS,
    "ingles": CanonicalSubject.ENGLISH,
    "english": CanonicalSubject.ENGLISH,
}


def subject_lookup_key(text: str) -> str:
    collapsed = _SPACE_RE.sub(" ", (text or "").replace("\u00A0", " ").strip()).lower()
    decomposed = unicodedata.normalize("NFKD", collapsed)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_subject(raw_subject: str) -> CanonicalSubject | str:
    """Map a free-text subject label to its canonical subject.

    Labels that are not recognized come back unchanged; they can never
    satisfy completeness, so callers simply drop them from scoring.
    """
    if isinstance(raw_subject, CanonicalSubject):
        return raw_subject
    return _SUBJECT_ALIASES.get(subject_lookup_key(raw_subject), raw_subject)


def is_natural_science(subject: CanonicalSubject | str) -> bool:
    return normalize_subject(subject) in NATURAL_SCIENCES
