"""Distance-based surcharge resolution.

Customer addresses are geocoded with the Nominatim search API and measured
against the dispatch hub in ``settings.BASE_LOCATION``. Resolution never
fails a booking: any geocoding problem yields a quote built from
``settings.DEFAULT_DISTANCE_KM``.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

import requests
from django.conf import settings

from .exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371


@dataclass(frozen=True)
class DistanceQuote:
    distance: Decimal
    distance_charge: Decimal
    customer_coordinates: Optional[dict[str, Any]]
    base_location: Optional[dict[str, float]]
    error: Optional[str] = None


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> Decimal:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return Decimal(str(EARTH_RADIUS_KM * c)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def distance_charge_for(distance_km) -> Decimal:
    charge = Decimal(str(distance_km)) * settings.DISTANCE_RATE_PER_KM
    return charge.quantize(Decimal('1'), rounding=ROUND_HALF_UP)


def match_accuracy(result: Mapping[str, Any], address: Mapping[str, str]) -> float:
    """Score a geocoding hit by how much of the requested address it matches."""
    found = result.get('address') or {}
    score = 0.0
    if found.get('postcode') == address.get('pincode'):
        score += 0.4
    if address.get('city') in (found.get('city'), found.get('town')):
        score += 0.3
    if found.get('state') == address.get('state'):
        score += 0.2
    street = (address.get('street') or '').lower()
    if street and street in (found.get('road') or '').lower():
        score += 0.1
    return score


class NominatimDistanceResolver:
    """Default pricing collaborator backed by OpenStreetMap Nominatim."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def geocode(self, address: Mapping[str, str]) -> Optional[dict[str, Any]]:
        street, city = address.get('street', ''), address.get('city', '')
        state, pincode = address.get('state', ''), address.get('pincode', '')
        queries = [
            f'{street}, {city}, {state} {pincode}',
            f'{street}, {city}, {state}',
            f'{city}, {state} {pincode}',
            f'{city}, {state}',
        ]
        best, best_accuracy = None, 0.0
        for query in queries:
            try:
                response = self.session.get(
                    f'{settings.NOMINATIM_BASE_URL}/search',
                    params={
                        'q': query,
                        'format': 'json',
                        'limit': 5,
                        'addressdetails': 1,
                        'countrycodes': settings.NOMINATIM_COUNTRY_CODES,
                    },
                    headers={'User-Agent': settings.NOMINATIM_USER_AGENT},
                    timeout=settings.GEOCODING_TIMEOUT,
                )
                response.raise_for_status()
                results = response.json()
            except (requests.RequestException, ValueError) as exc:
                logger.warning('Geocoding query %r failed: %s', query, exc)
                continue
            for result in results or []:
                accuracy = match_accuracy(result, address)
                if accuracy > best_accuracy:
                    best_accuracy = accuracy
                    best = {
                        'latitude': float(result['lat']),
                        'longitude': float(result['lon']),
                        'display_name': result.get('display_name', ''),
                        'accuracy': accuracy,
                    }
        if best and best_accuracy > settings.GEOCODING_MIN_ACCURACY:
            return best
        return None

    def quote(self, address: Optional[Mapping[str, str]] = None, coordinates: Optional[Mapping[str, float]] = None) -> DistanceQuote:
        base = settings.BASE_LOCATION
        if coordinates is not None:
            customer = {'latitude': float(coordinates['latitude']), 'longitude': float(coordinates['longitude'])}
        elif address is not None:
            customer = self.geocode(address)
            if customer is None:
                raise ExternalServiceError('geocoding', 'no accurate match for address')
        else:
            raise ExternalServiceError('geocoding', 'neither address nor coordinates supplied')
        distance = haversine_km(base['latitude'], base['longitude'], customer['latitude'], customer['longitude'])
        return DistanceQuote(
            distance=distance,
            distance_charge=distance_charge_for(distance),
            customer_coordinates=customer,
            base_location=dict(base),
        )


def fallback_quote(error: str) -> DistanceQuote:
    distance = Decimal(str(settings.DEFAULT_DISTANCE_KM)).quantize(Decimal('0.01'))
    return DistanceQuote(
        distance=distance,
        distance_charge=distance_charge_for(distance),
        customer_coordinates=None,
        base_location=dict(settings.BASE_LOCATION),
        error=error,
    )


def resolve_distance(resolver, address=None, coordinates=None) -> DistanceQuote:
    """Ask ``resolver`` for a quote, degrading to the default distance on failure."""
    try:
        return resolver.quote(address=address, coordinates=coordinates)
    except ExternalServiceError as exc:
        logger.warning('Distance resolution failed, using default distance: %s', exc)
        return fallback_quote(str(exc))
    except Exception as exc:
        logger.exception('Unexpected distance resolver failure')
        return fallback_quote(str(exc))
