"""Equipment categories derived from device type and human identifier."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
import logging
import re
from typing import Final
import unicodedata

from .const import CATEGORY_OTHER

_LOGGER = logging.getLogger(__name__)

CATEGORY_ENTRADA: Final = "entrada"
CATEGORY_LOJAS: Final = "lojas"
CATEGORY_CLIMATIZACAO: Final = "climatizacao"
CATEGORY_ELEVADORES: Final = "elevadores"
CATEGORY_ESCADAS_ROLANTES: Final = "escadas_rolantes"

DEFAULT_INFERRED_TYPE: Final = "3F_MEDIDOR"


def _upper(value: str | None) -> str:
    return (value or "").strip().upper()


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """A named category with device-type and identifier matches.

    ``device_types`` and ``device_profiles`` match on their own.
    ``paired_types`` match only when the device profile names the same
    type. ``conditional_device_types`` only match when the identifier also
    matches ``identifiers`` exactly or starts with one of
    ``identifier_prefixes``.
    """

    category: str
    device_types: frozenset[str] = frozenset()
    device_profiles: frozenset[str] = frozenset()
    paired_types: frozenset[str] = frozenset()
    conditional_device_types: frozenset[str] = frozenset()
    identifiers: frozenset[str] = frozenset()
    identifier_prefixes: tuple[str, ...] = ()

    def matches_identifier(self, identifier: str | None) -> bool:
        """Return ``True`` when ``identifier`` supports this category."""

        value = _upper(identifier)
        if not value:
            return False
        if value in self.identifiers:
            return True
        return any(value.startswith(prefix) for prefix in self.identifier_prefixes)

    def matches_type(self, device_type: str, device_profile: str) -> bool:
        """Return ``True`` when the type or profile alone selects this category."""

        if device_type and device_type in self.device_types:
            return True
        if device_profile and device_profile in self.device_profiles:
            return True
        return bool(device_type) and (
            device_type in self.paired_types and device_profile == device_type
        )


DEFAULT_RULES: Final[tuple[ClassificationRule, ...]] = (
    ClassificationRule(
        category=CATEGORY_ENTRADA,
        device_types=frozenset({"ENTRADA", "RELOGIO", "TRAFO", "SUBESTACAO"}),
        device_profiles=frozenset({"ENTRADA", "RELOGIO", "TRAFO", "SUBESTACAO"}),
    ),
    ClassificationRule(
        category=CATEGORY_LOJAS,
        paired_types=frozenset({"3F_MEDIDOR"}),
    ),
    ClassificationRule(
        category=CATEGORY_CLIMATIZACAO,
        device_types=frozenset(
            {"CHILLER", "AR_CONDICIONADO", "HVAC", "FANCOIL", "BOMBA_CAG"}
        ),
        device_profiles=frozenset(
            {"CHILLER", "AR_CONDICIONADO", "HVAC", "FANCOIL", "BOMBA_CAG"}
        ),
        conditional_device_types=frozenset({"BOMBA", "MOTOR"}),
        identifiers=frozenset({"CAG", "FANCOIL", "HVAC"}),
        identifier_prefixes=("CAG-", "FANCOIL-"),
    ),
    ClassificationRule(
        category=CATEGORY_ELEVADORES,
        device_types=frozenset({"ELEVADOR"}),
        device_profiles=frozenset({"ELEVADOR"}),
        identifiers=frozenset({"ELV", "ELEVADOR", "ELEVADORES"}),
        identifier_prefixes=("ELV-", "ELEVADOR-"),
    ),
    ClassificationRule(
        category=CATEGORY_ESCADAS_ROLANTES,
        device_types=frozenset({"ESCADA_ROLANTE"}),
        device_profiles=frozenset({"ESCADA_ROLANTE"}),
        identifiers=frozenset({"ESC", "ESCADA", "ESCADASROLANTES"}),
        identifier_prefixes=("ESC-", "ESCADA-", "ESCADA_"),
    ),
)


def classify(
    device_type: str | None,
    identifier: str | None,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
    *,
    device_profile: str | None = None,
) -> str:
    """Return the category of a device.

    Rules are tried in order: unconditional device-type or profile matches
    first, then conditional device-type matches backed by the identifier,
    then the identifier on its own. Devices nothing matches fall into
    ``other``.
    """

    dtype = _upper(device_type)
    profile = _upper(device_profile)
    if dtype or profile:
        for rule in rules:
            if rule.matches_type(dtype, profile):
                return rule.category
    if dtype:
        for rule in rules:
            if dtype in rule.conditional_device_types and rule.matches_identifier(
                identifier
            ):
                return rule.category
    for rule in rules:
        if rule.matches_identifier(identifier):
            return rule.category
    return CATEGORY_OTHER


_LIGHTING_TYPE_RE = re.compile(r"ILUMINA|LUZ|LAMPADA|LED")
_LIGHTING_ID_RE = re.compile(r"ILUMINA|LUZ")
_FIRE_RE = re.compile(r"INCENDIO")
_BACKUP_RE = re.compile(r"GERADOR|NOBREAK|UPS")


def classify_subcategory(
    category: str,
    device_type: str | None,
    identifier: str | None,
    *,
    device_profile: str | None = None,
) -> str | None:
    """Return the breakdown bucket of a device inside its category."""

    dtype = strip_accents(_upper(device_type))
    ident = strip_accents(_upper(identifier))
    kinds = f"{dtype} {strip_accents(_upper(device_profile))}"
    if category == CATEGORY_CLIMATIZACAO:
        if "CHILLER" in kinds:
            return "Chillers"
        if "FANCOIL" in kinds:
            return "Fancoils"
        if "CAG" in ident or "CENTRAL" in dtype:
            return "CAG"
        if "BOMBA" in dtype and "INCENDIO" not in dtype:
            return "Bombas Hidráulicas"
        return "Outros HVAC"
    if category == CATEGORY_OTHER:
        if _LIGHTING_TYPE_RE.search(dtype) or _LIGHTING_ID_RE.search(ident):
            return "Iluminação"
        if _FIRE_RE.search(dtype) or _FIRE_RE.search(ident):
            return "Bombas de Incêndio"
        if _BACKUP_RE.search(dtype):
            return "Geradores/Nobreaks"
        return "Geral"
    return None


def strip_accents(value: str) -> str:
    """Return ``value`` without combining diacritical marks."""

    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _has_any(text: str, needles: Iterable[str]) -> bool:
    return any(needle in text for needle in needles)


def infer_device_type(name: str | None) -> str:
    """Guess a device type from its display name."""

    upper = strip_accents((name or "").upper())

    if "COMPRESSOR" in upper:
        return "COMPRESSOR"
    if "VENT" in upper:
        return "VENTILADOR"
    if _has_any(upper, ("ESRL", "ESCADA")):
        return "ESCADA_ROLANTE"
    if "ELEV" in upper:
        return "ELEVADOR"
    if (
        ("MOTR" in upper and "CHILLER" not in upper)
        or _has_any(upper, ("MOTOR", "RECALQUE"))
    ):
        return "MOTOR"
    if _has_any(upper, ("RELOGIO", "RELOG", "REL ")):
        return "RELOGIO"
    if _has_any(upper, ("ENTRADA", "SUBESTACAO", "SUBEST")):
        return "ENTRADA"
    if "3F" in upper:
        if "CHILLER" in upper:
            return "CHILLER"
        if "FANCOIL" in upper:
            return "FANCOIL"
        if _has_any(upper, ("TRAFO", "ENTRADA")):
            return "ENTRADA"
        if "CAG" in upper:
            return "BOMBA_CAG"
        return DEFAULT_INFERRED_TYPE
    if _has_any(upper, ("HIDR", "BANHEIRO")):
        return "HIDROMETRO"
    if _has_any(upper, ("CAIXA DAGUA", "CX DAGUA", "CXDAGUA", "SCD")):
        return "CAIXA_DAGUA"
    if _has_any(upper, ("TANK", "TANQUE", "RESERVATORIO")):
        return "TANK"
    if "AUTOMATICO" in upper:
        return "SELETOR_AUTO_MANUAL"
    if _has_any(upper, ("TERMOSTATO", "TERMO", "TEMP")):
        return "TERMOSTATO"
    if "ABRE" in upper:
        return "SOLENOIDE"
    if _has_any(upper, ("AUTOMACAO", "GW_AUTO")):
        return "GLOBAL_AUTOMACAO"
    if " AC " in upper or upper.endswith(" AC"):
        return "CONTROLE REMOTO"
    return DEFAULT_INFERRED_TYPE


def effective_device_type(device_type: str | None, label: str | None) -> str:
    """Return ``device_type`` upper-cased, or one inferred from ``label``."""

    dtype = _upper(device_type)
    if dtype:
        return dtype
    inferred = infer_device_type(label)
    _LOGGER.debug("Inferred device type %s from name", inferred)
    return inferred


__all__ = [
    "CATEGORY_CLIMATIZACAO",
    "CATEGORY_ELEVADORES",
    "CATEGORY_ENTRADA",
    "CATEGORY_ESCADAS_ROLANTES",
    "CATEGORY_LOJAS",
    "DEFAULT_RULES",
    "ClassificationRule",
    "classify",
    "classify_subcategory",
    "effective_device_type",
    "infer_device_type",
    "strip_accents",
]
