# -*- coding: utf-8 -*-
"""
Job-posting catalog.

Maps tier, credit-pack and add-on keys to a price (in cents) and to the bundle
of credits they grant. Pure lookup: nothing here touches the database, so it is
safe to call from any thread without locking.

Prices can be overridden via JOBCREDITS_CATALOG_JSON, e.g.::

    {"tiers": {"starter": {"price_cents": 9900, "job_post": 4}}}
"""
import os
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from src.models.credit import CreditType
from src.services.ledger_errors import (
    InvalidBundleError,
    UnknownAddonError,
    UnknownCreditPackError,
    UnknownTierError,
)

logger = logging.getLogger(__name__)

GRANT_FIELDS = ("job_post", "featured_post", "social_graphic", "repost")


@dataclass(frozen=True)
class Grant:
    """Credit counts per type granted by a purchase."""

    job_post: int = 0
    featured_post: int = 0
    social_graphic: int = 0
    repost: int = 0

    def __add__(self, other: "Grant") -> "Grant":
        return Grant(*(getattr(self, f) + getattr(other, f) for f in GRANT_FIELDS))

    @property
    def total(self) -> int:
        return sum(getattr(self, f) for f in GRANT_FIELDS)

    def items(self) -> Iterator[Tuple[CreditType, int]]:
        for name in GRANT_FIELDS:
            yield CreditType(name), getattr(self, name)

    def to_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in GRANT_FIELDS}


@dataclass(frozen=True)
class CatalogItem:
    key: str
    name: str
    price_cents: int
    grant: Grant
    price_env: Optional[str] = None

    @property
    def stripe_price_id(self) -> Optional[str]:
        """Stripe Price id configured for this item, if any."""
        if not self.price_env:
            return None
        return os.getenv(self.price_env, "").strip() or None

    def to_dict(self) -> Dict:
        return {
            'key': self.key,
            'name': self.name,
            'price_cents': self.price_cents,
            'grant': self.grant.to_dict(),
        }


@dataclass(frozen=True)
class Bundle:
    """A resolved checkout: what the user pays and what they receive."""

    tier: Optional[str]
    credit_pack: Optional[str]
    addons: Tuple[str, ...]
    price_total_cents: int
    grant: Grant
    items: Tuple[CatalogItem, ...] = field(default_factory=tuple)

    @property
    def product(self) -> str:
        return self.tier or self.credit_pack or "addons"


@dataclass(frozen=True)
class Catalog:
    tiers: Dict[str, CatalogItem]
    addons: Dict[str, CatalogItem]
    credit_packs: Dict[str, CatalogItem]

    def to_dict(self) -> Dict:
        return {
            'tiers': [item.to_dict() for item in self.tiers.values()],
            'addons': [item.to_dict() for item in self.addons.values()],
            'credit_packs': [item.to_dict() for item in self.credit_packs.values()],
        }


DEFAULT_TIERS = {
    'starter': CatalogItem('starter', 'Starter', 8900, Grant(job_post=3),
                           'STRIPE_PRICE_STARTER'),
    'standard': CatalogItem('standard', 'Standard', 19900,
                            Grant(job_post=5, featured_post=1),
                            'STRIPE_PRICE_STANDARD'),
    'pro': CatalogItem('pro', 'Pro', 35000,
                       Grant(job_post=10, featured_post=2),
                       'STRIPE_PRICE_PRO'),
}

DEFAULT_ADDONS = {
    'featured_post': CatalogItem('featured_post', 'Featured Post', 2900,
                                 Grant(featured_post=1),
                                 'STRIPE_PRICE_FEATURED_POST'),
    'social_graphic': CatalogItem('social_graphic', 'Social Media Graphic', 1900,
                                  Grant(social_graphic=1),
                                  'STRIPE_PRICE_SOCIAL_GRAPHIC'),
    'feature_and_social_bundle': CatalogItem(
        'feature_and_social_bundle', 'Feature + Social Bundle', 3900,
        Grant(featured_post=1, social_graphic=1),
        'STRIPE_PRICE_FEATURE_SOCIAL_BUNDLE'),
    'repost': CatalogItem('repost', 'Job Repost', 2900, Grant(repost=1),
                          'STRIPE_PRICE_REPOST'),
}

DEFAULT_CREDIT_PACKS = {
    'single_credit': CatalogItem('single_credit', '1 Job Credit', 5900,
                                 Grant(job_post=1),
                                 'STRIPE_PRICE_SINGLE_CREDIT'),
    'five_credits': CatalogItem('five_credits', '5 Job Credits', 24900,
                                Grant(job_post=5),
                                'STRIPE_PRICE_FIVE_CREDITS'),
}

# The bundle add-on already contains these; selling both double-charges
BUNDLE_COMPONENTS = {
    'feature_and_social_bundle': ('featured_post', 'social_graphic'),
}


def _apply_overrides(items: Dict[str, CatalogItem], overrides: Dict) -> Dict[str, CatalogItem]:
    merged = dict(items)
    for key, values in (overrides or {}).items():
        base = merged.get(key)
        if base is None:
            logger.warning("Ignoring catalog override for unknown key %s", key)
            continue
        grant_values = {f: int(values[f]) for f in GRANT_FIELDS if f in values}
        merged[key] = replace(
            base,
            name=values.get('name', base.name),
            price_cents=int(values.get('price_cents', base.price_cents)),
            grant=replace(base.grant, **grant_values),
        )
    return merged


def load_catalog() -> Catalog:
    """
    Load the catalog with optional environment overrides.

    Returns:
        Catalog with tiers, add-ons and credit packs
    """
    tiers, addons, packs = DEFAULT_TIERS, DEFAULT_ADDONS, DEFAULT_CREDIT_PACKS

    catalog_json = os.getenv('JOBCREDITS_CATALOG_JSON')
    if catalog_json:
        try:
            overrides = json.loads(catalog_json)
            tiers = _apply_overrides(tiers, overrides.get('tiers'))
            addons = _apply_overrides(addons, overrides.get('addons'))
            packs = _apply_overrides(packs, overrides.get('credit_packs'))
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            # Fall back to the defaults rather than refusing to boot
            logger.warning("Failed to parse JOBCREDITS_CATALOG_JSON: %s", e)

    return Catalog(tiers=tiers, addons=addons, credit_packs=packs)


# Global catalog configuration
CATALOG = load_catalog()


def get_catalog() -> Catalog:
    return CATALOG


def list_catalog() -> Dict:
    """Catalog as shown to buyers: every tier, add-on and credit pack."""
    return get_catalog().to_dict()


def resolve_bundle(
    tier: Optional[str],
    addons: Optional[Iterable[str]] = None,
    credit_pack: Optional[str] = None,
) -> Bundle:
    """
    Resolve a checkout selection into a price and a credit grant.

    Args:
        tier: Tier key (starter, standard, pro); mutually exclusive with credit_pack
        addons: Add-on keys, each at most once
        credit_pack: Credit pack key (single_credit, five_credits)

    Returns:
        Bundle with the total price in cents and the summed grant

    Raises:
        UnknownTierError, UnknownAddonError, UnknownCreditPackError,
        InvalidBundleError
    """
    catalog = get_catalog()
    addon_keys: List[str] = list(addons or [])

    if tier and credit_pack:
        raise InvalidBundleError("Choose either a tier or a credit pack, not both.")
    if not tier and not credit_pack:
        raise InvalidBundleError("Either a tier or a credit pack must be specified.")

    items: List[CatalogItem] = []
    if tier:
        if tier not in catalog.tiers:
            raise UnknownTierError(tier)
        items.append(catalog.tiers[tier])
    else:
        if credit_pack not in catalog.credit_packs:
            raise UnknownCreditPackError(credit_pack)
        items.append(catalog.credit_packs[credit_pack])

    for key in addon_keys:
        if key not in catalog.addons:
            raise UnknownAddonError(key)

    if len(set(addon_keys)) != len(addon_keys):
        raise InvalidBundleError("Each add-on can only be purchased once per checkout.")

    for bundle_key, components in BUNDLE_COMPONENTS.items():
        if bundle_key in addon_keys and any(c in addon_keys for c in components):
            raise InvalidBundleError(
                f"{bundle_key} already includes {', '.join(components)}."
            )

    items.extend(catalog.addons[key] for key in addon_keys)

    grant = Grant()
    for item in items:
        grant = grant + item.grant

    return Bundle(
        tier=tier,
        credit_pack=credit_pack,
        addons=tuple(addon_keys),
        price_total_cents=sum(item.price_cents for item in items),
        grant=grant,
        items=tuple(items),
    )
