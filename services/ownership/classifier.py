"""Ownership classification and registry strategy.

Classification is deterministic and ordered by reliability:
  1. Registry ownership code (ejerforholdskode)
  2. Free-text keywords in the ownership description
  3. Legal-entity / cooperative patterns in the first owner name
The generative model is never asked to classify ownership.
"""

import re
from typing import Optional, Sequence

from services.ownership.models import OwnershipType, RegistryStrategy

# ejerforholdskode → type. 40 is resolved separately (association vs cooperative).
OWNERSHIP_CODES = {
    "10": OwnershipType.PRIVATE_INDIVIDUAL,
    "20": OwnershipType.COMPANY,
    "30": OwnershipType.COMPANY,
    "41": OwnershipType.HOUSING_COOPERATIVE,
    "50": OwnershipType.SOCIAL_HOUSING,
    "60": OwnershipType.GOVERNMENT,
    "70": OwnershipType.GOVERNMENT,
    "80": OwnershipType.GOVERNMENT,
}

# Order matters: first hit wins
TEXT_KEYWORDS = [
    (("andelsbolig",), OwnershipType.HOUSING_COOPERATIVE),
    (("ejerlejlighed", "ejerforening"), OwnershipType.OWNERS_ASSOCIATION),
    (("privatperson", "privat eje"), OwnershipType.PRIVATE_INDIVIDUAL),
    (("aktieselskab", "anpartsselskab"), OwnershipType.COMPANY),
    (("almennyttig", "almen bolig"), OwnershipType.SOCIAL_HOUSING),
    (("kommune", "staten", "region"), OwnershipType.GOVERNMENT),
]

_COMPANY_NAME = re.compile(r"(?<!\w)(aps|a/s|p/s|ivs|holding|invest|ejendom\w*|kapital|fond)(?!\w)", re.I)
_COOPERATIVE_NAME = re.compile(r"(?<!\w)(a/b|andels\w*)(?!\w)", re.I)
_ASSOCIATION_NAME = re.compile(r"(?<!\w)(e/f|ejerforening\w*)(?!\w)", re.I)
_SOCIAL_NAME = re.compile(r"(?<!\w)(boligselskab\w*|boligforening\w*|almen\w*)(?!\w)", re.I)
_GOVERNMENT_NAME = re.compile(r"(?<!\w)(\w+ kommune|staten|region \w+|\w*styrelse\w*)(?!\w)", re.I)
_ANY_ENTITY = re.compile(
    r"(?<!\w)(aps|a/s|i/s|k/s|p/s|smba|ivs|forening|fond|selskab|a/b|e/f)(?!\w)", re.I
)


def classify_ownership(
    code: Optional[str],
    text: Optional[str],
    owner_names: Optional[Sequence[str]] = None,
) -> OwnershipType:
    """Map registry ownership data onto an OwnershipType."""
    code = (code or "").strip()
    names = [n for n in (owner_names or []) if n and n.strip()]

    if code == "40":
        # Forening/legat/selvejende: the name tells association from cooperative
        if any(_ASSOCIATION_NAME.search(n) for n in names):
            return OwnershipType.OWNERS_ASSOCIATION
        if any(_COOPERATIVE_NAME.search(n) for n in names):
            return OwnershipType.HOUSING_COOPERATIVE
        return OwnershipType.OWNERS_ASSOCIATION
    if code in OWNERSHIP_CODES:
        return OWNERSHIP_CODES[code]

    lowered = (text or "").lower()
    if lowered:
        for keywords, ownership_type in TEXT_KEYWORDS:
            if any(k in lowered for k in keywords):
                return ownership_type

    if names:
        first = names[0]
        if _COOPERATIVE_NAME.search(first):
            return OwnershipType.HOUSING_COOPERATIVE
        if _ASSOCIATION_NAME.search(first):
            return OwnershipType.OWNERS_ASSOCIATION
        if _SOCIAL_NAME.search(first):
            return OwnershipType.SOCIAL_HOUSING
        if _GOVERNMENT_NAME.search(first):
            return OwnershipType.GOVERNMENT
        if _COMPANY_NAME.search(first):
            return OwnershipType.COMPANY
        if not _ANY_ENTITY.search(first):
            return OwnershipType.PRIVATE_INDIVIDUAL

    return OwnershipType.UNKNOWN


_STRATEGIES = {
    OwnershipType.COMPANY: RegistryStrategy(
        should_search_registry=True,
        require_address_match=False,  # head office may be elsewhere
        accept_private_owner=False,
        max_candidates=3,
        reason="Company owned: search CVR by the registered owner name",
    ),
    OwnershipType.HOUSING_COOPERATIVE: RegistryStrategy(
        should_search_registry=True,
        require_address_match=True,
        accept_private_owner=False,
        max_candidates=2,
        reason="Housing cooperative: the A/B must be registered at the property",
    ),
    OwnershipType.OWNERS_ASSOCIATION: RegistryStrategy(
        should_search_registry=True,
        require_address_match=True,
        accept_private_owner=False,
        max_candidates=2,
        reason="Owners' association: the E/F must be registered at the property",
    ),
    OwnershipType.PRIVATE_INDIVIDUAL: RegistryStrategy(
        should_search_registry=False,
        require_address_match=False,
        accept_private_owner=True,
        max_candidates=0,
        reason="Private individual: the person is the owner, skip CVR",
    ),
    OwnershipType.SOCIAL_HOUSING: RegistryStrategy(
        should_search_registry=True,
        require_address_match=False,
        accept_private_owner=False,
        max_candidates=2,
        reason="Social housing: search CVR for the housing company",
    ),
    OwnershipType.GOVERNMENT: RegistryStrategy(
        should_search_registry=False,
        require_address_match=False,
        accept_private_owner=False,
        max_candidates=0,
        reason="Publicly owned: CVR search is irrelevant",
    ),
    OwnershipType.UNKNOWN: RegistryStrategy(
        should_search_registry=True,
        require_address_match=False,
        accept_private_owner=True,
        max_candidates=2,
        reason="Unknown ownership: broad CVR search",
    ),
}


def registry_strategy(ownership_type: OwnershipType) -> RegistryStrategy:
    return _STRATEGIES[ownership_type]
