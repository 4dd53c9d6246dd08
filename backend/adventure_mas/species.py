"""Read-only species lookup used to flavour quest prompts.

Species data never feeds the rules engine; a failed lookup only means a
plainer prompt.
"""

import logging
from dataclasses import dataclass, field

import httpx

from .config import settings
from .errors import SpeciesLookupError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeciesInfo:
    id: int
    name: str
    localized_name: str
    types: list[str] = field(default_factory=list)
    flavour: str = ""


class SpeciesClient:
    """Small cached client over a PokeAPI-compatible endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_ms: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.species_api_url).rstrip("/")
        self.timeout = (timeout_ms or settings.species_timeout_ms) / 1000
        self._transport = transport
        self._cache: dict[tuple[int, str], SpeciesInfo] = {}

    async def get_species(self, species_id: int, language: str = "en") -> SpeciesInfo:
        if species_id <= 0:
            raise SpeciesLookupError(f"Invalid species id: {species_id}")
        key = (species_id, language)
        if key in self._cache:
            return self._cache[key]

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                pokemon = await self._get_json(client, f"{self.base_url}/pokemon/{species_id}")
                species = await self._get_json(client, f"{self.base_url}/pokemon-species/{species_id}")
        except httpx.TimeoutException:
            raise SpeciesLookupError(f"Species provider timed out for id {species_id}") from None
        except httpx.HTTPStatusError as e:
            raise SpeciesLookupError(
                f"Species provider returned HTTP {e.response.status_code} for id {species_id}"
            ) from None
        except httpx.RequestError as e:
            raise SpeciesLookupError(f"Failed to reach species provider: {e}") from None

        info = _parse_species(species_id, pokemon, species, language)
        self._cache[key] = info
        return info

    async def _get_json(self, client: httpx.AsyncClient, url: str) -> dict:
        response = await client.get(url)
        if response.status_code == 404:
            raise SpeciesLookupError(f"Species not found: {url.rsplit('/', 1)[-1]}")
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError:
            raise SpeciesLookupError(f"Invalid JSON from species provider: {url}") from None
        if not isinstance(data, dict):
            raise SpeciesLookupError("Invalid response from species provider: expected JSON object")
        return data


def _parse_species(species_id: int, pokemon: dict, species: dict, language: str) -> SpeciesInfo:
    name = str(pokemon.get("name") or species.get("name") or f"#{species_id}")
    localized = name
    for entry in species.get("names") or []:
        if isinstance(entry, dict) and (entry.get("language") or {}).get("name") == language:
            localized = str(entry.get("name") or name)
            break

    slots = sorted(
        (t for t in pokemon.get("types") or [] if isinstance(t, dict)),
        key=lambda t: t.get("slot", 0),
    )
    types = [str((t.get("type") or {}).get("name", "")).lower() for t in slots]

    flavour = ""
    for entry in species.get("flavor_text_entries") or []:
        if isinstance(entry, dict) and (entry.get("language") or {}).get("name") == language:
            # Provider text embeds form feeds and hard line breaks.
            flavour = " ".join(str(entry.get("flavor_text", "")).split())
            break
    return SpeciesInfo(
        id=species_id,
        name=name.capitalize(),
        localized_name=localized,
        types=[t for t in types if t],
        flavour=flavour,
    )
