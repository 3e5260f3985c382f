"""Specialist variants: behaviour profiles and the prompt classifier."""

from bonsai.variants.catalog import PRIME_VARIANT_ID, VariantCatalog
from bonsai.variants.definitions import DEFAULT_VARIANTS, Variant

__all__ = ["DEFAULT_VARIANTS", "PRIME_VARIANT_ID", "Variant", "VariantCatalog"]
